"""
Driver location store.

One `locations` row per driver holding the last reported position. Writes are
throttled: a report within `location_update_interval_ms` of the previous
applied one is dropped and reported back as skipped. The throttle check and
the write are a single conditional UPDATE so concurrent pings cannot both win.
"""
import logging
import time
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import NotFoundError
from app.models.driver import Driver
from app.models.location import Location
from app.services.geo import Nearby, nearest_within_radius, validate_coordinates

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class LocationReport:
    location: Location
    skipped: bool = False


@dataclass
class DriverPosition:
    driver_id: int
    latitude: float
    longitude: float
    last_update: int | None
    is_available: bool = True


def current_millis() -> int:
    return int(time.time() * 1000)


async def report_location(
    db: AsyncSession,
    driver_id: int,
    latitude: float,
    longitude: float,
    now_ms: int | None = None,
) -> LocationReport:
    validate_coordinates(latitude, longitude)
    now_ms = current_millis() if now_ms is None else now_ms

    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)

    result = await db.execute(select(Location).where(Location.driver_id == driver_id))
    location = result.scalar_one_or_none()

    if location is None:
        location = Location(
            driver_id=driver_id, latitude=latitude, longitude=longitude, last_update=now_ms
        )
        db.add(location)
        driver.latitude, driver.longitude = latitude, longitude
        try:
            await db.commit()
            logger.info("First location for driver=%s at (%s, %s)", driver_id, latitude, longitude)
            return LocationReport(location)
        except IntegrityError:
            # another first report landed in between; fall through to the throttled path
            await db.rollback()
            result = await db.execute(select(Location).where(Location.driver_id == driver_id))
            location = result.scalar_one()

    applied = await db.execute(
        update(Location)
        .where(
            Location.driver_id == driver_id,
            Location.last_update <= now_ms - settings.location_update_interval_ms,
        )
        .values(latitude=latitude, longitude=longitude, last_update=now_ms)
        .execution_options(synchronize_session=False)
    )
    if applied.rowcount == 0:
        await db.commit()
        logger.debug("Location update for driver=%s skipped by throttle", driver_id)
        return LocationReport(location, skipped=True)

    await db.execute(
        update(Driver)
        .where(Driver.id == driver_id)
        .values(latitude=latitude, longitude=longitude)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(location)
    return LocationReport(location)


async def move_driver_to(
    db: AsyncSession,
    driver_id: int,
    latitude: float,
    longitude: float,
    now_ms: int | None = None,
) -> None:
    """Unthrottled write of the driver's position. The caller commits."""
    validate_coordinates(latitude, longitude)
    now_ms = current_millis() if now_ms is None else now_ms

    result = await db.execute(select(Location).where(Location.driver_id == driver_id))
    location = result.scalar_one_or_none()
    if location is None:
        db.add(Location(driver_id=driver_id, latitude=latitude, longitude=longitude, last_update=now_ms))
    else:
        location.latitude, location.longitude, location.last_update = latitude, longitude, now_ms

    await db.execute(
        update(Driver)
        .where(Driver.id == driver_id)
        .values(latitude=latitude, longitude=longitude)
        .execution_options(synchronize_session=False)
    )


async def driver_position(db: AsyncSession, driver_id: int) -> DriverPosition | None:
    """Last tracked position of one driver, else the driver record's coordinates."""
    row = (await db.execute(
        select(Location.latitude, Location.longitude, Location.last_update, Driver.is_available)
        .join(Driver, Driver.id == Location.driver_id)
        .where(Location.driver_id == driver_id)
    )).first()
    if row is not None:
        return DriverPosition(driver_id, row.latitude, row.longitude, row.last_update, row.is_available)

    driver = await db.get(Driver, driver_id)
    if driver is None or driver.latitude is None or driver.longitude is None:
        return None
    return DriverPosition(driver_id, driver.latitude, driver.longitude, None, driver.is_available)


async def available_drivers_with_location(
    db: AsyncSession,
    now_ms: int | None = None,
    exclude_driver_id: int | None = None,
) -> list[DriverPosition]:
    """
    Available drivers with a location reported within the freshness window.
    When none qualify, falls back to the coordinates stored on the driver
    records, ignoring freshness, so matching is not starved.
    """
    now_ms = current_millis() if now_ms is None else now_ms

    stmt = (
        select(Location.driver_id, Location.latitude, Location.longitude, Location.last_update)
        .join(Driver, Driver.id == Location.driver_id)
        .where(
            Driver.is_available.is_(True),
            Location.last_update >= now_ms - settings.location_freshness_ms,
        )
    )
    if exclude_driver_id is not None:
        stmt = stmt.where(Location.driver_id != exclude_driver_id)
    rows = (await db.execute(stmt)).all()
    if rows:
        return [DriverPosition(r.driver_id, r.latitude, r.longitude, r.last_update) for r in rows]

    stmt = select(Driver.id, Driver.latitude, Driver.longitude).where(
        Driver.is_available.is_(True),
        Driver.latitude.is_not(None),
        Driver.longitude.is_not(None),
    )
    if exclude_driver_id is not None:
        stmt = stmt.where(Driver.id != exclude_driver_id)
    rows = (await db.execute(stmt)).all()
    if rows:
        logger.info("No fresh tracked locations; using %d driver record positions", len(rows))
    return [DriverPosition(r.id, r.latitude, r.longitude, None) for r in rows]


async def nearest_drivers(
    db: AsyncSession,
    latitude: float,
    longitude: float,
    max_radius_km: float,
    max_results: int,
    exclude_driver_id: int | None = None,
    now_ms: int | None = None,
) -> list[Nearby]:
    """`Nearby(DriverPosition, distance_km)` entries, closest first."""
    positions = await available_drivers_with_location(db, now_ms, exclude_driver_id)
    return nearest_within_radius(latitude, longitude, positions, max_radius_km)[:max_results]
