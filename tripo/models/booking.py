from sqlalchemy import String, Integer, DateTime, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("passenger_id", "idempotency_key", name="uq_booking_passenger_idempotency_key"),
        CheckConstraint("seats_booked BETWEEN 1 AND 8", name="ck_bookings_seats_booked"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ride_id: Mapped[str] = mapped_column(String(36), index=True)
    passenger_id: Mapped[str] = mapped_column(String(128), index=True)
    driver_id: Mapped[str] = mapped_column(String(128), index=True)  # copied from the ride

    seats_booked: Mapped[int] = mapped_column(Integer, default=1)
    pickup_point: Mapped[str] = mapped_column(String(500), default="")
    dropoff_point: Mapped[str] = mapped_column(String(500), default="")

    # Pricing, fixed at creation
    price_per_seat: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    service_fee: Mapped[int] = mapped_column(Integer, default=0)
    final_amount: Mapped[int] = mapped_column(Integer, default=0)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(30), default="requested", index=True)  # requested, confirmed, completed, cancelled_by_driver, cancelled_by_passenger

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    confirmed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(Text, nullable=True)

    idempotency_key: Mapped[str] = mapped_column(String(120), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}
