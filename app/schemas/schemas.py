from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from app.services.state_machine import BookingStatus


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class VerificationStatusEnum(str, Enum):
    unverified = "unverified"
    verified = "verified"
    rejected = "rejected"


class DiscountTypeEnum(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)


class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Pricing / discount schemas
# ---------------------------------------------------------------------------

class PricingCreateRequest(BaseModel):
    name: str = Field(default="standard", max_length=50)
    base_fare: float = Field(..., ge=0)
    cost_per_km: float = Field(..., ge=0)
    cost_per_minute: float = Field(..., ge=0)
    service_fee: float = Field(default=0.0, ge=0)
    minimum_fare: float = Field(default=0.0, ge=0)
    conditions_multiplier: float = Field(default=1.0, gt=0)


class PricingResponse(PricingCreateRequest):
    id: int

    model_config = {"from_attributes": True}


class DiscountCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    discount_type: DiscountTypeEnum
    discount_value: float = Field(..., ge=0)
    expiry_date: datetime
    maximum_uses: int = Field(..., ge=0)


class DiscountResponse(BaseModel):
    id: int
    code: str
    discount_type: DiscountTypeEnum
    discount_value: float
    expiry_date: datetime
    maximum_uses: int
    current_uses: int

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverCreateRequest(BaseModel):
    user_id: int
    license_number: str = Field(..., min_length=2, max_length=50)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    verification_status: VerificationStatusEnum = VerificationStatusEnum.unverified
    total_trips: int = Field(default=0, ge=0)
    is_available: bool = True
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class DriverResponse(BaseModel):
    id: int
    user_id: int
    license_number: str
    rating: Optional[float] = None
    verification_status: str
    total_trips: int
    is_available: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DriverAvailabilityRequest(BaseModel):
    is_available: bool


class LocationUpdateRequest(BaseModel):
    latitude: float
    longitude: float


class LocationUpdateResponse(BaseModel):
    driver_id: int
    latitude: float
    longitude: float
    last_update: int
    skipped: bool = False
    message: str = "Location updated"


class ConfirmPickupRequest(BaseModel):
    booking_id: int


# ---------------------------------------------------------------------------
# Booking schemas
# ---------------------------------------------------------------------------

class BookingCreateRequest(BaseModel):
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    pickup_time: datetime
    vehicle_id: Optional[int] = None
    pricing_id: Optional[int] = None
    discount_id: Optional[int] = None


class BookingUpdateRequest(BaseModel):
    status: Optional[BookingStatus] = None
    pickup_time: Optional[datetime] = None
    dropoff_time: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: int
    user_id: int
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    pricing_id: Optional[int] = None
    discount_id: Optional[int] = None
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    pickup_time: datetime
    dropoff_time: Optional[datetime] = None
    status: BookingStatus
    fare: float
    distance: float
    duration: float
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AssignDriverRequest(BaseModel):
    driver_id: int


class NearbyDriverResponse(BaseModel):
    driver_id: int
    latitude: float
    longitude: float
    distance_km: float
    route_distance_km: float
    eta_minutes: int
    route_instructions: list[str]
    is_estimate: bool = False


class ReassignmentResponse(BaseModel):
    success: bool
    reassigned: bool
    new_driver_id: Optional[int] = None
    booking: BookingResponse


class RouteInstructionsResponse(BaseModel):
    booking_id: Optional[int] = None
    distance_km: float
    duration_minutes: int
    instructions: list[str]
    is_estimate: bool = False


class AutocompleteResult(BaseModel):
    label: Optional[str] = None
    coordinates: list[float]


class ReverseGeocodeResponse(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


class PickupProgressResponse(BaseModel):
    booking_id: int
    driver_id: int
    current_latitude: float
    current_longitude: float
    distance_to_pickup_m: float
    eta_minutes: int
    status: str  # en_route | approaching | arrived
    last_update: Optional[int] = None
    route_instructions: list[str]
    is_estimate: bool = False
