from datetime import datetime
from enum import StrEnum
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Boolean, Float, JSON, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base_class import Base
from . import utcnow, as_utc

# available_quantity value meaning "no stock limit"
UNLIMITED_STOCK = -1


class RewardCategory(StrEnum):
    SCHOLARSHIP = "scholarship"
    FINANCIAL_SUPPORT = "financial_support"
    DISCOUNT = "discount"
    PUBLIC_SERVICE = "public_service"
    CULTURE = "culture"
    SPORT = "sport"
    HEALTH = "health"


class Reward(Base):
    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("available_quantity >= -1", name="ck_rewards_quantity"),
        CheckConstraint("cost_points > 0", name="ck_rewards_cost_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[RewardCategory] = mapped_column(default=RewardCategory.SCHOLARSHIP, index=True)
    cost_points: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    monetary_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(512))
    available_quantity: Mapped[int] = mapped_column(Integer, default=UNLIMITED_STOCK, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    requirements: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    valid_from: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))

    created_by: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    @property
    def is_unlimited(self) -> bool:
        return self.available_quantity == UNLIMITED_STOCK

    def has_stock(self) -> bool:
        return self.is_unlimited or self.available_quantity > 0

    def in_validity_window(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        valid_until = as_utc(self.valid_until)
        return valid_until is None or now < valid_until

    def is_available(self, now: datetime | None = None) -> bool:
        return self.has_stock() and self.is_active and self.in_validity_window(now)


class RedemptionStatus(StrEnum):
    REQUESTED = "requested"
    APPROVED = "approved"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


FINAL_REDEMPTION_STATES = (RedemptionStatus.DELIVERED, RedemptionStatus.REJECTED, RedemptionStatus.CANCELLED)
REFUNDABLE_REDEMPTION_STATES = (RedemptionStatus.REJECTED, RedemptionStatus.CANCELLED)


class Redemption(Base):
    __tablename__ = "redemptions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    user_display_name: Mapped[str] = mapped_column(String(128), nullable=False)

    reward_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("rewards.id", ondelete="CASCADE"),
        index=True,
    )
    reward_title: Mapped[str] = mapped_column(String(200), nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[RedemptionStatus] = mapped_column(
        default=RedemptionStatus.REQUESTED,
        index=True,
    )

    requested_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    reviewed_by: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    reviewed_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))

    rejection_reason: Mapped[str | None] = mapped_column(Text)
    user_comment: Mapped[str | None] = mapped_column(Text)
    admin_comment: Mapped[str | None] = mapped_column(Text)
    receipt_url: Mapped[str | None] = mapped_column(String(512))

    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_REDEMPTION_STATES

    @property
    def allows_refund(self) -> bool:
        return self.status in REFUNDABLE_REDEMPTION_STATES
