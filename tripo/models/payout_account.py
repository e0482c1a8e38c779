from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tripo.db.session import Base


class PayoutAccount(Base):
    """One row per provider; every payout request bumps it, so requests for the same provider serialize."""
    __tablename__ = "payout_accounts"

    provider_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    payout_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
