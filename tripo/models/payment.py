from sqlalchemy import String, Integer, DateTime, JSON, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # At most one completed payment per booking
        Index(
            "uq_payments_booking_completed", "booking_id", unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)  # payer
    ride_id: Mapped[str] = mapped_column(String(36), index=True)

    gateway: Mapped[str] = mapped_column(String(40), default="cybersource")
    gateway_order_id: Mapped[str] = mapped_column(String(120), default="", index=True)
    gateway_payment_id: Mapped[str] = mapped_column(String(120), default="")
    payment_method: Mapped[str] = mapped_column(String(40), default="")

    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(10), default="INR")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, completed, failed, refunding, refunded, partially_refunded
    refunds: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
