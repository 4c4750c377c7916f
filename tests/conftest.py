"""
Shared fixtures: a fresh SQLite database per test, an in-memory Redis
stand-in, a Haversine route provider and seed-data factories.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db
from app.dependencies import get_notifier, get_route_provider
from app.main import app
from app.models import Booking, Discount, Driver, Location, Pricing, User
from app.redis_client import get_redis
from app.services.geo import distance_km
from app.services.location import current_millis
from app.services.routing import RouteInfo, RouteStep

NAIROBI_CBD = (-1.2921, 36.8219)
WESTLANDS = (-1.3183, 36.8169)

KM_PER_DEGREE_LAT = 6371.0 * 3.141592653589793 / 180


def north_of(point: tuple[float, float], km: float) -> tuple[float, float]:
    """Point `km` due north of `point`."""
    return point[0] + km / KM_PER_DEGREE_LAT, point[1]


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
        return removed


class FakeRouteProvider:
    """Straight-line routes at 30 km/h; `error` is raised instead when set."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[float, float, float, float]] = []

    async def get_route(self, start_lat, start_lng, end_lat, end_lng):
        self.calls.append((start_lat, start_lng, end_lat, end_lng))
        if self.error is not None:
            raise self.error
        km = distance_km(start_lat, start_lng, end_lat, end_lng)
        duration = km / 30 * 3600
        return RouteInfo(
            distance_m=km * 1000,
            duration_s=duration,
            steps=[
                RouteStep(distance_m=km * 600, duration_s=duration * 0.6, instruction="Head north"),
                RouteStep(distance_m=km * 400, duration_s=duration * 0.4, instruction="Arrive at destination"),
            ],
        )

    async def autocomplete(self, query):
        return [{"label": f"{query}, Nairobi", "coordinates": [36.8219, -1.2921]}]

    async def reverse_geocode(self, lat, lng):
        return "Kenyatta Avenue, Nairobi"


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created: list[tuple[str, int]] = []
        self.accepted: list[tuple[str, int, int]] = []

    async def send_booking_created(self, email, booking):
        if self.fail:
            raise RuntimeError("mail API down")
        self.created.append((email, booking.id))
        return True

    async def send_booking_accepted(self, phone, booking, driver):
        if self.fail:
            raise RuntimeError("sms API down")
        self.accepted.append((phone, booking.id, driver.id))
        return True


class Factory:
    """Persists seed rows; every call commits."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = 0

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def user(self, **overrides) -> User:
        self._seq += 1
        fields = {
            "first_name": "Wanjiru",
            "last_name": f"Test{self._seq}",
            "email": f"user{self._seq}@example.com",
            "phone": f"+2547000000{self._seq:02d}",
        }
        fields.update(overrides)
        return await self._save(User(**fields))

    async def driver(
        self,
        at: tuple[float, float] | None = None,
        rating: float | None = None,
        is_available: bool = True,
        tracked: bool = True,
        last_update: int | None = None,
    ) -> Driver:
        user = await self.user()
        self._seq += 1
        driver = await self._save(Driver(
            user_id=user.id,
            license_number=f"DL-{self._seq:04d}",
            rating=rating,
            is_available=is_available,
            latitude=at[0] if at else None,
            longitude=at[1] if at else None,
        ))
        if at is not None and tracked:
            await self._save(Location(
                driver_id=driver.id,
                latitude=at[0],
                longitude=at[1],
                last_update=current_millis() if last_update is None else last_update,
            ))
        return driver

    async def pricing(self, **overrides) -> Pricing:
        fields = {
            "name": "standard",
            "base_fare": 50,
            "cost_per_km": 5,
            "cost_per_minute": 2,
            "service_fee": 0,
            "minimum_fare": 0,
            "conditions_multiplier": 1,
        }
        fields.update(overrides)
        return await self._save(Pricing(**fields))

    async def discount(self, **overrides) -> Discount:
        self._seq += 1
        fields = {
            "code": f"SAVE{self._seq}",
            "discount_type": "percentage",
            "discount_value": 10,
            "expiry_date": datetime.now(timezone.utc) + timedelta(days=7),
            "maximum_uses": 5,
            "current_uses": 0,
        }
        fields.update(overrides)
        return await self._save(Discount(**fields))

    async def booking(
        self,
        user: User | None = None,
        start: tuple[float, float] = NAIROBI_CBD,
        end: tuple[float, float] = WESTLANDS,
        status: str = "requested",
        driver: Driver | None = None,
    ) -> Booking:
        user = user or await self.user()
        return await self._save(Booking(
            user_id=user.id,
            driver_id=driver.id if driver else None,
            start_latitude=start[0],
            start_longitude=start[1],
            end_latitude=end[0],
            end_longitude=end[1],
            pickup_time=datetime.now(timezone.utc) + timedelta(minutes=15),
            status=status,
            fare=140,
            distance=2950,
            duration=354,
        ))


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def route_provider():
    return FakeRouteProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis, route_provider, notifier):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_route_provider] = lambda: route_provider
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
