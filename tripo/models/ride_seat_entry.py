from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base

class RideSeatEntry(Base):
    """One passenger's claim on a ride's seats (the ride's passenger map)."""
    __tablename__ = "ride_seat_entries"
    __table_args__ = (
        UniqueConstraint("ride_id", "passenger_id", name="uq_ride_seat_entry_ride_passenger"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ride_id: Mapped[str] = mapped_column(String(36), index=True)
    passenger_id: Mapped[str] = mapped_column(String(128), index=True)
    booking_id: Mapped[str] = mapped_column(String(36), nullable=True)

    seats_booked: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20))  # requested, confirmed
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    pickup_point: Mapped[str] = mapped_column(String(500), default="")
    dropoff_point: Mapped[str] = mapped_column(String(500), default="")
