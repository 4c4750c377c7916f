"""
Fare calculation service.

fare = (base + per_km * km + per_minute * minutes) * conditions_multiplier
       + service_fee                  (only when a pricing tier is given)
       - discount                     (when valid; floored at the tier's minimum fare and at 0)
rounded up to a whole currency unit.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from app.config import get_settings
from app.exceptions import InvalidFareError
from app.models.discount import Discount
from app.models.pricing import Pricing

settings = get_settings()


@dataclass(frozen=True)
class FareQuote:
    fare: int
    discount_applied: bool = False


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def discount_is_valid(discount: Discount, now: datetime | None = None) -> bool:
    """Not expired and still has uses left."""
    now = now or datetime.now(timezone.utc)
    return _as_utc(discount.expiry_date) > _as_utc(now) and discount.current_uses < discount.maximum_uses


def apply_discount(fare: float, discount: Discount) -> float:
    if discount.discount_type == "percentage":
        return fare * (1 - discount.discount_value / 100)
    return fare - discount.discount_value


def compute_fare(
    distance_m: float,
    duration_s: float,
    pricing: Pricing | None = None,
    discount: Discount | None = None,
    now: datetime | None = None,
) -> FareQuote:
    km = distance_m / 1000
    minutes = duration_s / 60

    if pricing is not None:
        base, per_km, per_minute = pricing.base_fare, pricing.cost_per_km, pricing.cost_per_minute
        surge = pricing.conditions_multiplier
    else:
        base = settings.default_base_fare
        per_km = settings.default_per_km_rate
        per_minute = settings.default_per_minute_rate
        surge = settings.default_surge_multiplier

    fare = (base + per_km * km + per_minute * minutes) * surge
    if pricing is not None:
        fare += pricing.service_fee

    applied = False
    if discount is not None and discount_is_valid(discount, now):
        fare = apply_discount(fare, discount)
        if pricing is not None:
            fare = max(fare, pricing.minimum_fare)
        fare = max(fare, 0.0)
        applied = True

    if not math.isfinite(fare):
        raise InvalidFareError(f"Computed fare is not a finite number: {fare}")

    # float noise must not push an exact fare up a whole unit
    return FareQuote(fare=math.ceil(round(fare, 6)), discount_applied=applied)
