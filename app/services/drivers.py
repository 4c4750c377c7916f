"""
Driver registration, availability and the driver-side booking transitions
(accept, reject with reassignment, pickup progress and confirmation).

Availability is only ever claimed with a conditional UPDATE:

    UPDATE drivers SET is_available = false WHERE id = ? AND is_available = true

Zero affected rows means another request got there first. Releasing is the
mirror image and only succeeds while no other requested or accepted booking
still holds the driver.
"""
import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import DriverUnavailableError, ForbiddenError, InvalidStateError, NotFoundError
from app.models.booking import Booking
from app.models.driver import Driver
from app.models.user import User
from app.redis_client import invalidate_booking, invalidate_driver
from app.schemas.schemas import DriverCreateRequest
from app.services.geo import distance_km, estimate_duration_seconds, validate_coordinates
from app.services.location import driver_position, nearest_drivers
from app.services.notifications import Notifier, notify_safely
from app.services.routing import RouteProvider, format_instructions, resolve_route
from app.services.state_machine import DRIVER_HOLDING_STATUSES, BookingStatus, ensure_status, ensure_transition

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class ReassignmentResult:
    success: bool
    reassigned: bool
    booking: Booking
    new_driver_id: int | None = None


@dataclass
class PickupProgress:
    booking_id: int
    driver_id: int
    current_latitude: float
    current_longitude: float
    distance_to_pickup_m: float
    eta_minutes: int
    status: str
    last_update: int | None
    route_instructions: list[str]
    is_estimate: bool = False


# ---------------------------------------------------------------------------
# Row helpers shared with the bookings service
# ---------------------------------------------------------------------------

async def get_booking_for_update(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return booking


async def claim_driver(db: AsyncSession, driver_id: int) -> Driver:
    """Flip an available driver to unavailable, or raise."""
    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)

    result = await db.execute(
        update(Driver)
        .where(Driver.id == driver_id, Driver.is_available.is_(True))
        .values(is_available=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise DriverUnavailableError(driver_id)
    await db.refresh(driver)
    return driver


def _holding_bookings(driver_id: int, exclude_booking_id: int | None = None):
    stmt = select(Booking.id).where(
        Booking.driver_id == driver_id,
        Booking.status.in_([s.value for s in DRIVER_HOLDING_STATUSES]),
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return stmt


async def release_driver(db: AsyncSession, driver_id: int, booking_id: int | None = None) -> bool:
    """
    Put the driver back on the market unless a booking other than
    `booking_id` still holds them. Returns whether the driver was released.
    """
    result = await db.execute(
        update(Driver)
        .where(Driver.id == driver_id, ~_holding_bookings(driver_id, booking_id).exists())
        .values(is_available=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("Driver=%s still holds another booking; left unavailable", driver_id)
        return False
    return True


# ---------------------------------------------------------------------------
# Registration and lookups
# ---------------------------------------------------------------------------

async def register_driver(db: AsyncSession, redis: aioredis.Redis, payload: DriverCreateRequest) -> Driver:
    """Create the driver profile of an existing user (one per user)."""
    if await db.get(User, payload.user_id) is None:
        raise NotFoundError("User", payload.user_id)

    existing = await db.execute(select(Driver.id).where(Driver.user_id == payload.user_id))
    if existing.scalar_one_or_none() is not None:
        raise InvalidStateError(f"User {payload.user_id} is already registered as a driver")

    if payload.latitude is not None and payload.longitude is not None:
        validate_coordinates(payload.latitude, payload.longitude)

    driver = Driver(
        user_id=payload.user_id,
        license_number=payload.license_number,
        rating=payload.rating,
        verification_status=payload.verification_status.value,
        total_trips=payload.total_trips,
        is_available=payload.is_available,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )
    db.add(driver)
    await db.commit()
    await db.refresh(driver)
    await invalidate_driver(redis)
    logger.info("Registered driver=%s for user=%s", driver.id, driver.user_id)
    return driver


async def get_driver(db: AsyncSession, driver_id: int) -> Driver:
    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)
    return driver


async def list_drivers(db: AsyncSession) -> list[Driver]:
    result = await db.execute(select(Driver).order_by(Driver.id))
    return list(result.scalars())


async def list_available_drivers(db: AsyncSession) -> list[Driver]:
    result = await db.execute(select(Driver).where(Driver.is_available.is_(True)).order_by(Driver.id))
    return list(result.scalars())


async def get_driver_by_user(db: AsyncSession, user_id: int) -> Driver:
    result = await db.execute(select(Driver).where(Driver.user_id == user_id))
    driver = result.scalar_one_or_none()
    if driver is None:
        raise NotFoundError("Driver for user", user_id)
    return driver


async def set_driver_availability(
    db: AsyncSession, redis: aioredis.Redis, driver_id: int, is_available: bool
) -> Driver:
    driver = await get_driver(db, driver_id)
    if is_available:
        # a driver holding a not-yet-started booking stays off the market
        held = await db.execute(_holding_bookings(driver_id).limit(1))
        booking_id = held.scalar_one_or_none()
        if booking_id is not None:
            raise InvalidStateError(
                f"Driver {driver_id} is assigned to booking {booking_id} and cannot be made available"
            )

    driver.is_available = is_available
    await db.commit()
    await invalidate_driver(redis, driver_id)
    logger.info("Driver=%s availability set to %s", driver_id, is_available)
    return driver


async def driver_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    driver = await get_driver_by_user(db, user_id)
    result = await db.execute(
        select(Booking).where(Booking.driver_id == driver.id).order_by(Booking.pickup_time.desc())
    )
    return list(result.scalars())


async def pending_bookings_for_driver(db: AsyncSession, user_id: int) -> list[Booking]:
    """Bookings offered to the driver and still awaiting an answer."""
    driver = await get_driver_by_user(db, user_id)
    result = await db.execute(
        select(Booking)
        .where(Booking.driver_id == driver.id, Booking.status == BookingStatus.REQUESTED.value)
        .order_by(Booking.pickup_time.asc())
    )
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Driver-side transitions
# ---------------------------------------------------------------------------

async def accept_booking(
    db: AsyncSession,
    redis: aioredis.Redis,
    notifier: Notifier,
    user_id: int,
    booking_id: int,
) -> Booking:
    driver = await get_driver_by_user(db, user_id)
    booking = await get_booking_for_update(db, booking_id)

    ensure_status(booking.status, BookingStatus.REQUESTED, action="accept")
    if booking.driver_id is not None and booking.driver_id != driver.id:
        raise ForbiddenError("This booking is already assigned to another driver")

    # an offer made through assignment already took the driver off the market
    if booking.driver_id is None:
        await claim_driver(db, driver.id)

    booking.driver_id = driver.id
    booking.status = ensure_transition(booking.status, BookingStatus.ACCEPTED).value
    await db.commit()
    await db.refresh(driver)

    await invalidate_booking(redis, booking_id)
    await invalidate_driver(redis, driver.id)
    logger.info("Booking=%s accepted by driver=%s (requested -> accepted)", booking_id, driver.id)

    user = await db.get(User, booking.user_id)
    if user is not None and user.phone:
        await notify_safely(notifier.send_booking_accepted(user.phone, booking, driver))
    return booking


async def reject_booking_with_reassignment(
    db: AsyncSession,
    redis: aioredis.Redis,
    notifier: Notifier,
    user_id: int,
    booking_id: int,
) -> ReassignmentResult:
    """
    Release the booking from the rejecting driver, then try to hand it to the
    nearest other available driver. Both steps commit separately; a failure
    between them leaves a free driver and an unassigned booking.
    """
    driver = await get_driver_by_user(db, user_id)
    booking = await get_booking_for_update(db, booking_id)

    ensure_status(booking.status, BookingStatus.REQUESTED, BookingStatus.ACCEPTED, action="reject")
    if booking.driver_id != driver.id:
        raise ForbiddenError("This booking is not assigned to this driver")

    rejecting_id = driver.id
    old_status = booking.status
    booking.driver_id = None
    if booking.status != BookingStatus.REQUESTED.value:
        booking.status = ensure_transition(booking.status, BookingStatus.REQUESTED).value
    await release_driver(db, rejecting_id, booking_id)
    await db.commit()
    await invalidate_booking(redis, booking_id)
    await invalidate_driver(redis, rejecting_id)
    logger.info(
        "Booking=%s rejected by driver=%s (%s -> requested)", booking_id, rejecting_id, old_status
    )

    candidates = await nearest_drivers(
        db,
        booking.start_latitude,
        booking.start_longitude,
        settings.reassignment_radius_km,
        settings.matching_max_candidates,
        exclude_driver_id=rejecting_id,
    )
    for candidate in candidates:
        new_driver_id = candidate.item.driver_id
        if new_driver_id == rejecting_id:
            logger.warning("Refusing to reassign booking=%s to rejecting driver=%s", booking_id, rejecting_id)
            continue

        booking = await get_booking_for_update(db, booking_id)
        if booking.status != BookingStatus.REQUESTED.value or booking.driver_id is not None:
            # picked up by someone else meanwhile
            await db.rollback()
            break
        try:
            new_driver = await claim_driver(db, new_driver_id)
        except DriverUnavailableError:
            await db.rollback()
            logger.info("Candidate driver=%s taken meanwhile, trying next", new_driver_id)
            continue

        booking.driver_id = new_driver.id
        booking.status = ensure_transition(booking.status, BookingStatus.ACCEPTED).value
        await db.commit()
        await invalidate_booking(redis, booking_id)
        await invalidate_driver(redis, new_driver.id)
        logger.info(
            "Booking=%s reassigned from driver=%s to driver=%s (requested -> accepted)",
            booking_id, rejecting_id, new_driver.id,
        )

        user = await db.get(User, booking.user_id)
        if user is not None and user.phone:
            await notify_safely(notifier.send_booking_accepted(user.phone, booking, new_driver))
        return ReassignmentResult(
            success=True, reassigned=True, booking=booking, new_driver_id=new_driver.id
        )

    logger.warning("No replacement driver found for booking=%s", booking_id)
    booking = await db.get(Booking, booking_id, populate_existing=True)
    return ReassignmentResult(success=True, reassigned=False, booking=booking)


async def confirm_pickup(
    db: AsyncSession, redis: aioredis.Redis, driver_id: int, booking_id: int
) -> Booking:
    """
    accepted -> in_progress. The driver is marked available again right away,
    unless another booking still holds them, so they can be offered their next
    ride while this one is under way.
    """
    await get_driver(db, driver_id)
    booking = await get_booking_for_update(db, booking_id)
    if booking.driver_id != driver_id:
        raise ForbiddenError(f"Booking {booking_id} is not assigned to driver {driver_id}")

    ensure_status(booking.status, BookingStatus.ACCEPTED, action="confirm pickup for")
    booking.status = ensure_transition(booking.status, BookingStatus.IN_PROGRESS).value
    await release_driver(db, driver_id, booking_id)
    await db.commit()

    await invalidate_booking(redis, booking_id)
    await invalidate_driver(redis, driver_id)
    logger.info("Pickup confirmed for booking=%s by driver=%s (accepted -> in_progress)", booking_id, driver_id)
    return booking


def pickup_status(distance_m: float) -> str:
    if distance_m <= settings.pickup_arrived_radius_m:
        return "arrived"
    if distance_m <= settings.pickup_approaching_radius_m:
        return "approaching"
    return "en_route"


def pickup_eta_minutes(distance_m: float) -> int:
    # straight-line estimate padded for traffic
    seconds = estimate_duration_seconds(distance_m / 1000, settings.fallback_speed_kph)
    return round(seconds / 60 * settings.pickup_eta_multiplier)


async def pickup_progress(
    db: AsyncSession, provider: RouteProvider, driver_id: int, booking_id: int
) -> PickupProgress:
    """How far the assigned driver still is from the booking's pickup point."""
    await get_driver(db, driver_id)
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    if booking.driver_id != driver_id:
        raise ForbiddenError(f"Booking {booking_id} is not assigned to driver {driver_id}")
    ensure_status(booking.status, BookingStatus.REQUESTED, BookingStatus.ACCEPTED, action="track pickup for")

    position = await driver_position(db, driver_id)
    if position is None:
        raise NotFoundError("Location for driver", driver_id)

    distance_m = distance_km(
        position.latitude, position.longitude, booking.start_latitude, booking.start_longitude
    ) * 1000
    route = await resolve_route(
        provider, position.latitude, position.longitude, booking.start_latitude, booking.start_longitude
    )
    return PickupProgress(
        booking_id=booking_id,
        driver_id=driver_id,
        current_latitude=position.latitude,
        current_longitude=position.longitude,
        distance_to_pickup_m=round(distance_m, 1),
        eta_minutes=pickup_eta_minutes(distance_m),
        status=pickup_status(distance_m),
        last_update=position.last_update,
        route_instructions=format_instructions(route.steps),
        is_estimate=route.is_fallback,
    )
