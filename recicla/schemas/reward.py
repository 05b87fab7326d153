from pydantic import BaseModel, Field
from datetime import datetime
from ..models.reward import RewardCategory, RedemptionStatus, UNLIMITED_STOCK
from .common import ORMModel


class RewardCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: RewardCategory = RewardCategory.SCHOLARSHIP
    cost_points: int = Field(gt=0)
    monetary_value: float = Field(default=0.0, ge=0)
    image_url: str | None = None
    available_quantity: int = Field(default=UNLIMITED_STOCK, ge=UNLIMITED_STOCK)
    requirements: list[str] = []
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class RewardUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category: RewardCategory | None = None
    cost_points: int | None = Field(default=None, gt=0)
    monetary_value: float | None = Field(default=None, ge=0)
    image_url: str | None = None
    available_quantity: int | None = Field(default=None, ge=UNLIMITED_STOCK)
    requirements: list[str] | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class RewardActive(BaseModel):
    active: bool


class RewardOut(ORMModel):
    id: str
    title: str
    description: str | None = None
    category: RewardCategory
    cost_points: int
    monetary_value: float
    image_url: str | None = None
    available_quantity: int
    is_unlimited: bool
    is_active: bool
    requirements: list[str] = []
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    created_by: str | None = None


class RedemptionCreate(BaseModel):
    reward_id: str
    comment: str | None = None


class RedemptionReview(BaseModel):
    approve: bool
    reason: str | None = None
    admin_comment: str | None = None


class RedemptionCancel(BaseModel):
    comment: str | None = None


class RedemptionDeliver(BaseModel):
    receipt_url: str | None = None
    admin_comment: str | None = None


class RedemptionOut(ORMModel):
    id: str
    user_id: str
    user_display_name: str
    reward_id: str
    reward_title: str
    points_spent: int
    status: RedemptionStatus
    requested_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    delivered_at: datetime | None = None
    refunded_at: datetime | None = None
    rejection_reason: str | None = None
    user_comment: str | None = None
    admin_comment: str | None = None
    receipt_url: str | None = None
