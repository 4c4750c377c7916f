"""
Route information provider.

OpenRouteService adapter over httpx plus the Haversine fallback used when
ORS cannot snap a coordinate to a road. Callers that can live with an
estimate go through `resolve_route`, which keeps `is_fallback` on the result
so downstream code knows it is not a road route.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from fastapi import status

from app.config import get_settings
from app.exceptions import DomainError
from app.services.geo import distance_km, estimate_duration_seconds, is_valid_coordinate

logger = logging.getLogger(__name__)
settings = get_settings()

ORS_NO_ROUTABLE_POINT_MARKERS = ("2010", "Could not find routable point")


class RoutingError(DomainError):
    code = "routing_error"


class NoRoutablePointError(RoutingError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "no_routable_point"


class RoutingApiError(RoutingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "routing_api_error"


@dataclass
class RouteStep:
    distance_m: float
    duration_s: float
    instruction: str
    name: str | None = None


@dataclass
class RouteInfo:
    distance_m: float
    duration_s: float
    steps: list[RouteStep] = field(default_factory=list)
    geometry: Any = None
    is_fallback: bool = False


class RouteProvider(Protocol):
    async def get_route(
        self, start_lat: float, start_lng: float, end_lat: float, end_lng: float
    ) -> RouteInfo: ...

    async def autocomplete(self, query: str) -> list[dict]: ...

    async def reverse_geocode(self, lat: float, lng: float) -> str | None: ...


class OrsClient:
    """Thin async client for the OpenRouteService directions and geocode APIs."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openrouteservice.org",
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json, application/geo+json; charset=utf-8"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_route(
        self, start_lat: float, start_lng: float, end_lat: float, end_lng: float
    ) -> RouteInfo:
        if not (is_valid_coordinate(start_lat, start_lng) and is_valid_coordinate(end_lat, end_lng)):
            raise RoutingApiError("Invalid coordinates provided")

        try:
            resp = await self._client.get(
                "/v2/directions/driving-car",
                params={
                    "api_key": self.api_key,
                    # ORS expects lng,lat
                    "start": f"{start_lng},{start_lat}",
                    "end": f"{end_lng},{end_lat}",
                },
            )
        except httpx.HTTPError as exc:
            logger.error("ORS directions request failed: %s", exc)
            raise RoutingApiError("Failed to calculate route") from exc

        if resp.status_code >= 400:
            body = resp.text
            if any(marker in body for marker in ORS_NO_ROUTABLE_POINT_MARKERS):
                raise NoRoutablePointError(
                    "No routable road found near the specified location. "
                    "Please try a nearby address or main road."
                )
            logger.error("ORS directions error %s: %s", resp.status_code, body)
            raise RoutingApiError(f"Routing service error: {resp.status_code}")

        features = resp.json().get("features") or []
        if not features:
            raise RoutingApiError("No route found between the specified locations")

        route = features[0]
        props = route["properties"]
        return RouteInfo(
            distance_m=props["summary"].get("distance", 0.0),
            duration_s=props["summary"].get("duration", 0.0),
            steps=_extract_steps(props),
            geometry=route.get("geometry"),
        )

    async def autocomplete(self, query: str) -> list[dict]:
        try:
            resp = await self._client.get(
                "/geocode/autocomplete", params={"api_key": self.api_key, "text": query}
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise RoutingApiError(f"Autocomplete API error: {exc}") from exc

        return [
            {"label": f["properties"].get("label"), "coordinates": f["geometry"]["coordinates"]}
            for f in resp.json().get("features") or []
        ]

    async def reverse_geocode(self, lat: float, lng: float) -> str | None:
        try:
            resp = await self._client.get(
                "/geocode/reverse",
                params={"api_key": self.api_key, "point.lat": lat, "point.lon": lng},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", lat, lng, exc)
            return None

        features = resp.json().get("features") or []
        if not features:
            return None
        props = features[0]["properties"]
        parts = [props.get("name"), props.get("street"), props.get("locality")]
        seen: list[str] = []
        for part in parts:
            if part and part not in seen:
                seen.append(part)
        return ", ".join(seen) or props.get("label")


def _extract_steps(props: dict) -> list[RouteStep]:
    segments = props.get("segments") or []
    if not segments:
        return []
    return [
        RouteStep(
            distance_m=step.get("distance", 0.0),
            duration_s=step.get("duration", 0.0),
            instruction=step.get("instruction", ""),
            name=step.get("name") or None,
        )
        for step in segments[0].get("steps", [])
    ]


def fallback_route(
    start_lat: float,
    start_lng: float,
    end_lat: float,
    end_lng: float,
    speed_kph: float | None = None,
) -> RouteInfo:
    """Straight-line estimate at an assumed average speed."""
    speed = speed_kph or settings.fallback_speed_kph
    km = distance_km(start_lat, start_lng, end_lat, end_lng)
    duration = round(estimate_duration_seconds(km, speed))
    step = RouteStep(
        distance_m=km * 1000,
        duration_s=duration,
        instruction=f"Estimated route: {km:.1f} km, ~{round(km / speed * 60)} min",
    )
    return RouteInfo(distance_m=km * 1000, duration_s=duration, steps=[step], is_fallback=True)


async def resolve_route(
    provider: RouteProvider,
    start_lat: float,
    start_lng: float,
    end_lat: float,
    end_lng: float,
) -> RouteInfo:
    """Provider route, or the fallback estimate when no routable point exists.

    RoutingApiError is not recovered here.
    """
    try:
        return await provider.get_route(start_lat, start_lng, end_lat, end_lng)
    except NoRoutablePointError:
        logger.warning(
            "No routable point between (%s, %s) and (%s, %s); using fallback estimate",
            start_lat, start_lng, end_lat, end_lng,
        )
        return fallback_route(start_lat, start_lng, end_lat, end_lng)


async def resolve_routes(
    provider: RouteProvider, legs: list[tuple[float, float, float, float]]
) -> list[RouteInfo]:
    """
    `resolve_route` for several (start_lat, start_lng, end_lat, end_lng) legs
    concurrently. Every call runs to completion before the first failure is
    re-raised, so no request is left running unobserved.
    """
    results = await asyncio.gather(
        *(resolve_route(provider, *leg) for leg in legs), return_exceptions=True
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def format_instructions(steps: list[RouteStep]) -> list[str]:
    return [
        f"{i}. {step.instruction} ({step.distance_m / 1000:.1f}km, ~{round(step.duration_s / 60)}min)"
        for i, step in enumerate(steps, start=1)
    ]
