"""
Bookings router — POST/GET /v1/bookings, GET/PATCH/DELETE /v1/bookings/{id},
                  driver assignment, completion, payment, route and address lookups
"""
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_notifier, get_route_provider
from app.middleware.auth import get_current_user_id
from app.redis_client import ALL_BOOKINGS_KEY, booking_key, cache_get, cache_set, get_redis
from app.schemas.schemas import (
    AssignDriverRequest, AutocompleteResult, BookingCreateRequest, BookingResponse,
    BookingUpdateRequest, NearbyDriverResponse, ReverseGeocodeResponse, RouteInstructionsResponse,
)
from app.services import bookings as booking_service
from app.services.geo import validate_coordinates
from app.services.notifications import Notifier
from app.services.routing import RouteProvider, format_instructions, resolve_route

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/bookings", tags=["Bookings"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def create_booking(
    payload: BookingCreateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    provider: RouteProvider = Depends(get_route_provider),
    notifier: Notifier = Depends(get_notifier),
    user_id: int = Depends(get_current_user_id),
):
    booking = await booking_service.create_booking(db, redis, provider, notifier, user_id, payload)
    return BookingResponse.model_validate(booking)


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    # Cache-aside: check Redis first
    cached = await cache_get(redis, ALL_BOOKINGS_KEY)
    if cached:
        return json.loads(cached)

    bookings = await booking_service.list_bookings(db)
    body = [BookingResponse.model_validate(b).model_dump(mode="json") for b in bookings]
    await cache_set(redis, ALL_BOOKINGS_KEY, json.dumps(body))
    return body


@router.get("/my-bookings", response_model=list[BookingResponse])
async def my_bookings(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    bookings = await booking_service.customer_bookings(db, user_id)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/autocomplete", response_model=list[AutocompleteResult])
async def autocomplete(
    query: str = Query(..., min_length=1),
    provider: RouteProvider = Depends(get_route_provider),
):
    """Address suggestions from the routing provider."""
    return await provider.autocomplete(query)


@router.get("/reverse-geocode", response_model=ReverseGeocodeResponse)
async def reverse_geocode(
    lat: float,
    lng: float,
    provider: RouteProvider = Depends(get_route_provider),
):
    validate_coordinates(lat, lng)
    return ReverseGeocodeResponse(latitude=lat, longitude=lng, address=await provider.reverse_geocode(lat, lng))


@router.get("/route", response_model=RouteInstructionsResponse)
async def preview_route(
    start_lat: float,
    start_lng: float,
    end_lat: float,
    end_lng: float,
    provider: RouteProvider = Depends(get_route_provider),
):
    """Route between two arbitrary points, before any booking exists."""
    validate_coordinates(start_lat, start_lng)
    validate_coordinates(end_lat, end_lng)
    route = await resolve_route(provider, start_lat, start_lng, end_lat, end_lng)
    return RouteInstructionsResponse(
        distance_km=round(route.distance_m / 1000, 3),
        duration_minutes=round(route.duration_s / 60),
        instructions=format_instructions(route.steps),
        is_estimate=route.is_fallback,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    cached = await cache_get(redis, booking_key(booking_id))
    if cached:
        return BookingResponse.model_validate_json(cached)

    booking = await booking_service.get_booking(db, booking_id)
    resp = BookingResponse.model_validate(booking)
    await cache_set(redis, booking_key(booking_id), resp.model_dump_json())
    return resp


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: int,
    payload: BookingUpdateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await booking_service.update_booking(db, redis, booking_id, payload)
    return BookingResponse.model_validate(booking)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    await booking_service.remove_booking(db, redis, booking_id)


@router.get("/{booking_id}/nearby-drivers", response_model=list[NearbyDriverResponse])
async def nearby_drivers(
    booking_id: int,
    max_radius_km: float = Query(default=5.0, gt=0, le=100),
    max_results: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    provider: RouteProvider = Depends(get_route_provider),
):
    found = await booking_service.nearby_drivers_for_booking(
        db, provider, booking_id, max_radius_km, max_results
    )
    return [NearbyDriverResponse(**vars(n)) for n in found]


@router.post("/{booking_id}/assign-driver", response_model=BookingResponse)
async def assign_driver(
    booking_id: int,
    payload: AssignDriverRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await booking_service.assign_driver_to_booking(db, redis, booking_id, payload.driver_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/auto-assign", response_model=BookingResponse)
async def auto_assign(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    provider: RouteProvider = Depends(get_route_provider),
):
    booking = await booking_service.auto_assign_nearest_driver(db, redis, provider, booking_id)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/route-instructions", response_model=RouteInstructionsResponse)
async def route_instructions(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    provider: RouteProvider = Depends(get_route_provider),
):
    found = await booking_service.route_instructions_for_booking(db, provider, booking_id)
    return RouteInstructionsResponse(**vars(found))


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await booking_service.complete_booking_and_update_driver_location(db, redis, booking_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete-payment", response_model=BookingResponse)
async def complete_payment(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await booking_service.complete_payment(db, redis, booking_id)
    return BookingResponse.model_validate(booking)
