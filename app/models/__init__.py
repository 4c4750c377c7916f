from app.models.user import User
from app.models.driver import Driver
from app.models.vehicle import Vehicle
from app.models.location import Location
from app.models.pricing import Pricing
from app.models.discount import Discount
from app.models.booking import Booking

__all__ = ["User", "Driver", "Vehicle", "Location", "Pricing", "Discount", "Booking"]
