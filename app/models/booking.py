from datetime import datetime
from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Booking(Base):
    __tablename__ = "bookings"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    driver_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("vehicles.id"), nullable=True)
    pricing_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("pricing.id"), nullable=True)
    discount_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("discounts.id"), nullable=True)

    start_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    start_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    end_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    end_longitude: Mapped[float] = mapped_column(Float, nullable=False)

    pickup_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dropoff_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # see app.services.state_machine.BookingStatus
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="requested", index=True)
    fare: Mapped[float] = mapped_column(Float, nullable=False)
    # metres / seconds
    distance: Mapped[float] = mapped_column(Float, nullable=False)
    duration: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
