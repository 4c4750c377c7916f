"""
Drivers router — POST/GET /v1/driver, GET /v1/driver/available,
                 driver-side booking actions (accept / reject / confirm pickup),
                 POST /v1/driver/{id}/location, PATCH /v1/driver/{id}/availability,
                 GET /v1/driver/{id}/pickup-progress
"""
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_notifier, get_route_provider
from app.middleware.auth import get_current_user_id
from app.redis_client import ALL_DRIVERS_KEY, cache_get, cache_set, driver_key, get_redis, invalidate_driver
from app.schemas.schemas import (
    BookingResponse, ConfirmPickupRequest, DriverAvailabilityRequest, DriverCreateRequest,
    DriverResponse, LocationUpdateRequest, LocationUpdateResponse, PickupProgressResponse, ReassignmentResponse,
)
from app.services import drivers as driver_service
from app.services.location import report_location
from app.services.notifications import Notifier
from app.services.routing import RouteProvider

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/driver", tags=["Drivers"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DriverResponse)
async def create_driver(
    payload: DriverCreateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    """Register a driver profile for an existing user."""
    driver = await driver_service.register_driver(db, redis, payload)
    return DriverResponse.model_validate(driver)


@router.get("", response_model=list[DriverResponse])
async def list_drivers(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    cached = await cache_get(redis, ALL_DRIVERS_KEY)
    if cached:
        return json.loads(cached)

    drivers = await driver_service.list_drivers(db)
    body = [DriverResponse.model_validate(d).model_dump(mode="json") for d in drivers]
    await cache_set(redis, ALL_DRIVERS_KEY, json.dumps(body))
    return body


@router.get("/available", response_model=list[DriverResponse])
async def list_available_drivers(db: AsyncSession = Depends(get_db)):
    drivers = await driver_service.list_available_drivers(db)
    return [DriverResponse.model_validate(d) for d in drivers]


@router.get("/bookings", response_model=list[BookingResponse])
async def my_bookings(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    bookings = await driver_service.driver_bookings(db, user_id)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/bookings/pending", response_model=list[BookingResponse])
async def my_pending_bookings(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    bookings = await driver_service.pending_bookings_for_driver(db, user_id)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.post("/bookings/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(get_notifier),
    user_id: int = Depends(get_current_user_id),
):
    booking = await driver_service.accept_booking(db, redis, notifier, user_id, booking_id)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/reject", response_model=ReassignmentResponse)
async def reject_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    notifier: Notifier = Depends(get_notifier),
    user_id: int = Depends(get_current_user_id),
):
    """Reject an offered or accepted booking and try to hand it to another driver."""
    result = await driver_service.reject_booking_with_reassignment(db, redis, notifier, user_id, booking_id)
    return ReassignmentResponse(
        success=result.success,
        reassigned=result.reassigned,
        new_driver_id=result.new_driver_id,
        booking=BookingResponse.model_validate(result.booking),
    )


@router.get("/by-user/{user_id}", response_model=DriverResponse)
async def get_driver_by_user(user_id: int, db: AsyncSession = Depends(get_db)):
    driver = await driver_service.get_driver_by_user(db, user_id)
    return DriverResponse.model_validate(driver)


@router.get("/{driver_id}", response_model=DriverResponse)
async def get_driver(
    driver_id: int,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    cached = await cache_get(redis, driver_key(driver_id))
    if cached:
        return DriverResponse.model_validate_json(cached)

    driver = await driver_service.get_driver(db, driver_id)
    resp = DriverResponse.model_validate(driver)
    await cache_set(redis, driver_key(driver_id), resp.model_dump_json())
    return resp


@router.patch("/{driver_id}/availability", response_model=DriverResponse)
async def update_availability(
    driver_id: int,
    payload: DriverAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    """Toggle driver online/offline."""
    driver = await driver_service.set_driver_availability(db, redis, driver_id, payload.is_available)
    return DriverResponse.model_validate(driver)


@router.post("/{driver_id}/location", response_model=LocationUpdateResponse)
async def update_location(
    driver_id: int,
    payload: LocationUpdateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    """
    High-frequency GPS ping. Reports arriving less than the throttle
    interval after the last applied one come back with `skipped: true`.
    """
    report = await report_location(db, driver_id, payload.latitude, payload.longitude)
    if not report.skipped:
        await invalidate_driver(redis, driver_id)
    loc = report.location
    return LocationUpdateResponse(
        driver_id=driver_id,
        latitude=loc.latitude,
        longitude=loc.longitude,
        last_update=loc.last_update,
        skipped=report.skipped,
        message="Location update skipped (too frequent)" if report.skipped else "Location updated",
    )


@router.get("/{driver_id}/pickup-progress", response_model=PickupProgressResponse)
async def pickup_progress(
    driver_id: int,
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    provider: RouteProvider = Depends(get_route_provider),
):
    """Distance, ETA and directions from the driver to the booking's pickup point."""
    progress = await driver_service.pickup_progress(db, provider, driver_id, booking_id)
    return PickupProgressResponse(**vars(progress))


@router.post("/{driver_id}/confirm-pickup", response_model=BookingResponse)
async def confirm_pickup(
    driver_id: int,
    payload: ConfirmPickupRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await driver_service.confirm_pickup(db, redis, driver_id, payload.booking_id)
    return BookingResponse.model_validate(booking)
