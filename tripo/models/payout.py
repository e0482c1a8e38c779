from sqlalchemy import String, Integer, DateTime, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base

class Payout(Base):
    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(128), index=True)

    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(10), default="INR")
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, processing, completed, failed, cancelled
    payout_method: Mapped[str] = mapped_column(String(40))  # bank_transfer, upi, wallet
    bank_details: Mapped[dict] = mapped_column(JSON, default=dict)
    transaction_ids: Mapped[list] = mapped_column(JSON, default=list)  # payment ids covered by this payout

    platform_fee: Mapped[int] = mapped_column(Integer, default=0)  # processing fee
    net_amount: Mapped[int] = mapped_column(Integer, default=0)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str] = mapped_column(String(128), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}
