"""
Booking creation and the operator-side lifecycle: manual and automatic
driver assignment, completion, payment and generic status updates.

Every status change goes through the transition table in
``app.services.state_machine``; drivers are claimed and released with the
row helpers in ``app.services.drivers``.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import DriverUnavailableError, NoDriversAvailableError, NotFoundError, ValidationError
from app.models.booking import Booking
from app.models.discount import Discount
from app.models.pricing import Pricing
from app.models.user import User
from app.models.vehicle import Vehicle
from app.redis_client import invalidate_booking, invalidate_driver
from app.schemas.schemas import BookingCreateRequest, BookingUpdateRequest
from app.services.drivers import claim_driver, get_booking_for_update, release_driver
from app.services.geo import validate_coordinates
from app.services.location import move_driver_to, nearest_drivers
from app.services.matching import nearest_by_distance, rank_candidates
from app.services.notifications import Notifier, notify_safely
from app.services.pricing import compute_fare
from app.services.routing import (
    RouteProvider,
    RoutingApiError,
    format_instructions,
    resolve_route,
    resolve_routes,
)
from app.services.state_machine import (
    DRIVER_RELEASING_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    check_driver_invariant,
    ensure_status,
    ensure_transition,
)

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class NearbyDriver:
    driver_id: int
    latitude: float
    longitude: float
    distance_km: float
    route_distance_km: float
    eta_minutes: int
    route_instructions: list[str]
    is_estimate: bool = False


@dataclass
class RouteInstructions:
    booking_id: int | None
    distance_km: float
    duration_minutes: int
    instructions: list[str]
    is_estimate: bool = False


async def _get_or_404(db: AsyncSession, model, entity: str, entity_id: int):
    obj = await db.get(model, entity_id)
    if obj is None:
        raise NotFoundError(entity, entity_id)
    return obj


# ---------------------------------------------------------------------------
# Creation and reads
# ---------------------------------------------------------------------------

async def create_booking(
    db: AsyncSession,
    redis: aioredis.Redis,
    provider: RouteProvider,
    notifier: Notifier,
    user_id: int,
    payload: BookingCreateRequest,
) -> Booking:
    """
    Route the trip, price it and persist it as `requested`.

    Routing failures abort creation; nothing is written unless the fare,
    distance and duration are all finite.
    """
    validate_coordinates(payload.start_latitude, payload.start_longitude)
    validate_coordinates(payload.end_latitude, payload.end_longitude)

    user = await _get_or_404(db, User, "User", user_id)
    pricing = None
    if payload.pricing_id is not None:
        pricing = await _get_or_404(db, Pricing, "Pricing", payload.pricing_id)
    discount = None
    if payload.discount_id is not None:
        discount = await _get_or_404(db, Discount, "Discount", payload.discount_id)
    if payload.vehicle_id is not None:
        await _get_or_404(db, Vehicle, "Vehicle", payload.vehicle_id)

    route = await provider.get_route(
        payload.start_latitude, payload.start_longitude,
        payload.end_latitude, payload.end_longitude,
    )
    if not (math.isfinite(route.distance_m) and math.isfinite(route.duration_s)):
        raise ValidationError("Route distance and duration must be finite numbers")

    quote = compute_fare(route.distance_m, route.duration_s, pricing, discount)
    if quote.discount_applied:
        # usage counter moves in the same transaction as the booking insert
        claimed = await db.execute(
            update(Discount)
            .where(Discount.id == discount.id, Discount.current_uses < Discount.maximum_uses)
            .values(current_uses=Discount.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            logger.warning("Discount=%s ran out of uses while booking; pricing without it", discount.id)
            quote = compute_fare(route.distance_m, route.duration_s, pricing, None)

    booking = Booking(
        user_id=user.id,
        vehicle_id=payload.vehicle_id,
        pricing_id=payload.pricing_id,
        discount_id=discount.id if quote.discount_applied else None,
        start_latitude=payload.start_latitude,
        start_longitude=payload.start_longitude,
        end_latitude=payload.end_latitude,
        end_longitude=payload.end_longitude,
        pickup_time=payload.pickup_time,
        status=BookingStatus.REQUESTED.value,
        fare=quote.fare,
        distance=route.distance_m,
        duration=route.duration_s,
    )
    db.add(booking)
    await db.commit()
    await db.refresh(booking)
    await invalidate_booking(redis)
    logger.info(
        "Created booking=%s for user=%s fare=%s distance=%.0fm duration=%.0fs",
        booking.id, user.id, booking.fare, booking.distance, booking.duration,
    )

    await notify_safely(notifier.send_booking_created(user.email, booking))
    return booking


async def list_bookings(db: AsyncSession) -> list[Booking]:
    result = await db.execute(select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc()))
    return list(result.scalars())


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    return await _get_or_404(db, Booking, "Booking", booking_id)


async def customer_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Bookings made by the calling customer, latest pickup first."""
    await _get_or_404(db, User, "User", user_id)
    result = await db.execute(
        select(Booking).where(Booking.user_id == user_id).order_by(Booking.pickup_time.desc(), Booking.id.desc())
    )
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Generic update / removal
# ---------------------------------------------------------------------------

async def update_booking(
    db: AsyncSession, redis: aioredis.Redis, booking_id: int, payload: BookingUpdateRequest
) -> Booking:
    booking = await get_booking_for_update(db, booking_id)
    released_driver_id = None

    if payload.status is not None and payload.status.value != booking.status:
        old_status = booking.status
        new_status = ensure_transition(old_status, payload.status)
        check_driver_invariant(new_status, booking.driver_id)
        booking.status = new_status.value
        if new_status in DRIVER_RELEASING_STATUSES and booking.driver_id is not None:
            released_driver_id = booking.driver_id
            await release_driver(db, released_driver_id, booking_id)
        if new_status == BookingStatus.COMPLETED:
            booking.dropoff_time = payload.dropoff_time or datetime.now(timezone.utc)
        logger.info("Booking=%s status %s -> %s", booking_id, old_status, new_status.value)

    if payload.pickup_time is not None:
        booking.pickup_time = payload.pickup_time
    if payload.dropoff_time is not None:
        booking.dropoff_time = payload.dropoff_time

    await db.commit()
    await invalidate_booking(redis, booking_id)
    if released_driver_id is not None:
        await invalidate_driver(redis, released_driver_id)
    return booking


async def remove_booking(db: AsyncSession, redis: aioredis.Redis, booking_id: int) -> None:
    """Admin removal. A driver still held by the booking is released."""
    booking = await get_booking_for_update(db, booking_id)
    driver_id = booking.driver_id
    if driver_id is not None and BookingStatus(booking.status) not in TERMINAL_STATUSES:
        await release_driver(db, driver_id, booking_id)
    await db.delete(booking)
    await db.commit()

    await invalidate_booking(redis, booking_id)
    if driver_id is not None:
        await invalidate_driver(redis, driver_id)
    logger.info("Removed booking=%s", booking_id)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

async def nearby_drivers_for_booking(
    db: AsyncSession,
    provider: RouteProvider,
    booking_id: int,
    max_radius_km: float = 5.0,
    max_results: int = 10,
) -> list[NearbyDriver]:
    booking = await get_booking(db, booking_id)
    nearby = await nearest_drivers(
        db, booking.start_latitude, booking.start_longitude, max_radius_km, max_results
    )
    routes = await resolve_routes(
        provider,
        [(n.item.latitude, n.item.longitude, booking.start_latitude, booking.start_longitude) for n in nearby],
    )
    return [
        NearbyDriver(
            driver_id=n.item.driver_id,
            latitude=n.item.latitude,
            longitude=n.item.longitude,
            distance_km=round(n.distance_km, 3),
            route_distance_km=round(route.distance_m / 1000, 3),
            eta_minutes=round(route.duration_s / 60),
            route_instructions=format_instructions(route.steps),
            is_estimate=route.is_fallback,
        )
        for n, route in zip(nearby, routes)
    ]


async def assign_driver_to_booking(
    db: AsyncSession, redis: aioredis.Redis, booking_id: int, driver_id: int
) -> Booking:
    """
    Offer a `requested` booking to a driver. The driver is taken off the
    market; the status only moves once the driver accepts.
    """
    booking = await get_booking_for_update(db, booking_id)
    ensure_status(booking.status, BookingStatus.REQUESTED, action="assign a driver to")
    if booking.driver_id == driver_id:
        return booking

    await claim_driver(db, driver_id)
    previous_driver_id = booking.driver_id
    if previous_driver_id is not None:
        await release_driver(db, previous_driver_id, booking_id)
    booking.driver_id = driver_id
    await db.commit()

    await invalidate_booking(redis, booking_id)
    await invalidate_driver(redis, driver_id, previous_driver_id)
    logger.info(
        "Assigned driver=%s to booking=%s (previous driver=%s)", driver_id, booking_id, previous_driver_id
    )
    return booking


async def auto_assign_nearest_driver(
    db: AsyncSession, redis: aioredis.Redis, provider: RouteProvider, booking_id: int
) -> Booking:
    """
    Assign the best-scoring driver. When the routing provider fails the
    closest driver by straight-line distance is used instead. Raises
    NoDriversAvailableError when nobody can be assigned.
    """
    booking = await get_booking(db, booking_id)
    ensure_status(booking.status, BookingStatus.REQUESTED, action="auto-assign")
    pickup = (booking.start_latitude, booking.start_longitude)

    try:
        ranked = await rank_candidates(db, provider, *pickup, exclude_driver_id=booking.driver_id)
        driver_ids = [c.driver.id for c in ranked]
        radius = settings.matching_radius_steps_km[-1]
    except RoutingApiError as exc:
        logger.warning("Routing failed while matching booking=%s (%s); using nearest driver", booking_id, exc)
        nearest = await nearest_by_distance(db, *pickup, exclude_driver_id=booking.driver_id)
        radius = settings.matching_fallback_radius_km
        if nearest is None:
            raise NoDriversAvailableError(radius)
        driver_ids = [nearest.item.driver_id]

    for driver_id in driver_ids:
        try:
            return await assign_driver_to_booking(db, redis, booking_id, driver_id)
        except DriverUnavailableError:
            await db.rollback()
            logger.info("Driver=%s was claimed concurrently; trying next candidate", driver_id)
    raise NoDriversAvailableError(radius)


# ---------------------------------------------------------------------------
# Completion / payment / route
# ---------------------------------------------------------------------------

async def complete_booking_and_update_driver_location(
    db: AsyncSession, redis: aioredis.Redis, booking_id: int
) -> Booking:
    booking = await get_booking_for_update(db, booking_id)
    ensure_status(booking.status, BookingStatus.IN_PROGRESS, action="complete")
    check_driver_invariant(booking.status, booking.driver_id)

    booking.status = ensure_transition(booking.status, BookingStatus.COMPLETED).value
    booking.dropoff_time = datetime.now(timezone.utc)
    await move_driver_to(db, booking.driver_id, booking.end_latitude, booking.end_longitude)
    await release_driver(db, booking.driver_id, booking_id)
    await db.commit()

    await invalidate_booking(redis, booking_id)
    await invalidate_driver(redis, booking.driver_id)
    logger.info(
        "Booking=%s completed (in_progress -> completed); driver=%s now at (%s, %s)",
        booking_id, booking.driver_id, booking.end_latitude, booking.end_longitude,
    )
    return booking


async def complete_payment(db: AsyncSession, redis: aioredis.Redis, booking_id: int) -> Booking:
    booking = await get_booking_for_update(db, booking_id)
    old_status = booking.status
    booking.status = ensure_transition(old_status, BookingStatus.PAYMENT_COMPLETED).value
    await db.commit()
    await invalidate_booking(redis, booking_id)
    logger.info("Booking=%s status %s -> payment_completed", booking_id, old_status)
    return booking


async def route_instructions_for_booking(
    db: AsyncSession, provider: RouteProvider, booking_id: int
) -> RouteInstructions:
    booking = await get_booking(db, booking_id)
    route = await resolve_route(
        provider,
        booking.start_latitude, booking.start_longitude,
        booking.end_latitude, booking.end_longitude,
    )
    return RouteInstructions(
        booking_id=booking.id,
        distance_km=round(route.distance_m / 1000, 3),
        duration_minutes=round(route.duration_s / 60),
        instructions=format_instructions(route.steps),
        is_estimate=route.is_fallback,
    )
