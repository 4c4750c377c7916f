"""
Driver-booking matching engine.

Flow:
  1. Walk the radius ladder (5 → 10 → 15 → 25 km by default) and stop at the
     first radius with at least one available driver, capped per attempt
  2. Route every candidate to the pickup point concurrently; routes the
     provider cannot snap fall back to a straight-line estimate
  3. Score: distance 0.4, rating 0.3, availability 0.2, vehicle type 0.1
  4. Highest score first; shorter route wins ties

Nothing within the last radius → NoDriversAvailableError.
RoutingApiError is not handled here; auto-assignment falls back to
`nearest_by_distance` instead.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.exceptions import NoDriversAvailableError
from app.models.driver import Driver
from app.services.geo import Nearby
from app.services.location import DriverPosition, nearest_drivers
from app.services.routing import RouteInfo, RouteProvider, resolve_routes

logger = logging.getLogger(__name__)
settings = get_settings()

VEHICLE_TYPE_SCORE = 100.0


@dataclass(frozen=True)
class MatchingWeights:
    distance: float = 0.4
    rating: float = 0.3
    availability: float = 0.2
    vehicle: float = 0.1
    neutral_rating_score: float = 80.0

    @classmethod
    def from_settings(cls, s: Settings) -> "MatchingWeights":
        return cls(
            distance=s.matching_weight_distance,
            rating=s.matching_weight_rating,
            availability=s.matching_weight_availability,
            vehicle=s.matching_weight_vehicle,
            neutral_rating_score=s.matching_neutral_rating_score,
        )


@dataclass
class ScoredCandidate:
    driver: Driver
    position: DriverPosition
    distance_km: float
    route: RouteInfo
    score: int


def score_candidate(
    distance_m: float,
    rating: float | None,
    is_available: bool,
    weights: MatchingWeights | None = None,
) -> int:
    w = weights or MatchingWeights.from_settings(settings)
    distance_score = max(0.0, 100 - (distance_m / 1000) * 10)
    rating_score = rating * 20 if rating is not None else w.neutral_rating_score
    availability_score = 100.0 if is_available else 0.0
    total = (
        distance_score * w.distance
        + rating_score * w.rating
        + availability_score * w.availability
        + VEHICLE_TYPE_SCORE * w.vehicle
    )
    return round(total)


async def _find_in_expanding_radius(
    db: AsyncSession,
    pickup_lat: float,
    pickup_lng: float,
    exclude_driver_id: int | None,
) -> list[Nearby]:
    for radius in settings.matching_radius_steps_km:
        nearby = await nearest_drivers(
            db, pickup_lat, pickup_lng, radius, settings.matching_max_candidates, exclude_driver_id
        )
        if nearby:
            logger.info("Found %d candidate(s) within %g km", len(nearby), radius)
            return nearby
        logger.debug("No drivers within %g km, widening search", radius)
    raise NoDriversAvailableError(settings.matching_radius_steps_km[-1])


async def rank_candidates(
    db: AsyncSession,
    provider: RouteProvider,
    pickup_lat: float,
    pickup_lng: float,
    exclude_driver_id: int | None = None,
) -> list[ScoredCandidate]:
    nearby = await _find_in_expanding_radius(db, pickup_lat, pickup_lng, exclude_driver_id)

    ids = [n.item.driver_id for n in nearby]
    result = await db.execute(select(Driver).where(Driver.id.in_(ids)))
    drivers = {d.id: d for d in result.scalars()}

    # the session is not touched while routes are in flight
    routes = await resolve_routes(
        provider, [(pickup_lat, pickup_lng, n.item.latitude, n.item.longitude) for n in nearby]
    )

    weights = MatchingWeights.from_settings(settings)
    candidates = []
    for n, route in zip(nearby, routes):
        driver = drivers.get(n.item.driver_id)
        if driver is None:
            continue
        candidates.append(ScoredCandidate(
            driver=driver,
            position=n.item,
            distance_km=n.distance_km,
            route=route,
            score=score_candidate(route.distance_m, driver.rating, driver.is_available, weights),
        ))

    candidates.sort(key=lambda c: (-c.score, c.route.distance_m))
    return candidates


async def nearest_by_distance(
    db: AsyncSession,
    pickup_lat: float,
    pickup_lng: float,
    radius_km: float | None = None,
    exclude_driver_id: int | None = None,
) -> Nearby | None:
    """Closest available driver by straight-line distance, scoring bypassed."""
    radius = radius_km if radius_km is not None else settings.matching_fallback_radius_km
    nearby = await nearest_drivers(db, pickup_lat, pickup_lng, radius, 1, exclude_driver_id)
    return nearby[0] if nearby else None
