from enum import StrEnum
from sqlalchemy import String, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid import uuid4

from ..db.base_class import Base
from . import utcnow

class TransactionType(StrEnum):
    EARN = "earn"
    SPEND = "spend"
    REFUND = "refund"
    ADJUST = "adjust"

class PointsTransaction(Base):
    __tablename__ = "points_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # signed: credits positive, debits negative
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column()
    reason: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, index=True)
    delivery_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("deliveries.id", ondelete="SET NULL"))
    redemption_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("redemptions.id", ondelete="SET NULL"))
    created_by: Mapped[str | None] = mapped_column(String(128), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
