from sqlalchemy import String, Integer, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base

class Ride(Base):
    __tablename__ = "rides"
    __table_args__ = (
        CheckConstraint("total_seats BETWEEN 1 AND 8", name="ck_rides_total_seats"),
        CheckConstraint("available_seats >= 0 AND available_seats <= total_seats", name="ck_rides_available_seats"),
        CheckConstraint("price_per_seat >= 0", name="ck_rides_price_per_seat"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    driver_id: Mapped[str] = mapped_column(String(128), index=True)

    origin_label: Mapped[str] = mapped_column(String(200), default="")
    origin_address: Mapped[str] = mapped_column(String(500), default="")
    destination_label: Mapped[str] = mapped_column(String(200), default="")
    destination_address: Mapped[str] = mapped_column(String(500), default="")

    # Absolute instants (UTC), never local date/time strings
    departure_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    arrival_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    price_per_seat: Mapped[int] = mapped_column(Integer)
    total_seats: Mapped[int] = mapped_column(Integer)
    available_seats: Mapped[int] = mapped_column(Integer)

    instant_booking: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="published", index=True)  # published, in_progress, completed, cancelled

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}
