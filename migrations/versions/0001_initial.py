"""Initial schema — users, drivers, vehicles, locations, pricing, discounts, bookings"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), unique=True, nullable=False),
        sa.Column("license_number", sa.String(50), nullable=False),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="unverified"),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_available", "drivers", ["is_available"])

    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("plate_number", sa.String(20), unique=True, nullable=False),
        sa.Column("make", sa.String(50), nullable=False),
        sa.Column("model", sa.String(50), nullable=False),
        sa.Column("vehicle_type", sa.String(20), nullable=False, server_default="sedan"),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="4"),
    )
    op.create_index("idx_vehicles_driver", "vehicles", ["driver_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), unique=True, nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("last_update", sa.BigInteger, nullable=False),
    )
    op.create_index("idx_locations_last_update", "locations", ["last_update"])

    op.create_table(
        "pricing",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False, server_default="standard"),
        sa.Column("base_fare", sa.Float, nullable=False),
        sa.Column("cost_per_km", sa.Float, nullable=False),
        sa.Column("cost_per_minute", sa.Float, nullable=False),
        sa.Column("service_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("minimum_fare", sa.Float, nullable=False, server_default="0"),
        sa.Column("conditions_multiplier", sa.Float, nullable=False, server_default="1"),
    )

    op.create_table(
        "discounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), unique=True, nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Float, nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("maximum_uses", sa.Integer, nullable=False),
        sa.Column("current_uses", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("pricing_id", sa.Integer, sa.ForeignKey("pricing.id"), nullable=True),
        sa.Column("discount_id", sa.Integer, sa.ForeignKey("discounts.id"), nullable=True),
        sa.Column("start_latitude", sa.Float, nullable=False),
        sa.Column("start_longitude", sa.Float, nullable=False),
        sa.Column("end_latitude", sa.Float, nullable=False),
        sa.Column("end_longitude", sa.Float, nullable=False),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dropoff_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="requested"),
        sa.Column("fare", sa.Float, nullable=False),
        sa.Column("distance", sa.Float, nullable=False),
        sa.Column("duration", sa.Float, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("fare >= 0 AND distance >= 0 AND duration >= 0", name="ck_bookings_non_negative"),
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_user", "bookings", ["user_id"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])
    op.create_index("idx_bookings_created", "bookings", ["created_at"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("discounts")
    op.drop_table("pricing")
    op.drop_table("locations")
    op.drop_table("vehicles")
    op.drop_table("drivers")
    op.drop_table("users")
