from datetime import datetime
from pydantic import BaseModel, Field
from ..models.delivery import Material, DeliveryStatus
from .common import ORMModel


class DeliveryCreate(BaseModel):
    material: Material
    weight_kg: float = Field(gt=0)
    photo_url: str | None = None
    comment: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class DeliveryReview(BaseModel):
    approve: bool
    reason: str | None = None


class DeliveryOut(ORMModel):
    id: str
    user_id: str
    user_display_name: str
    material: Material
    weight_kg: float
    points: int
    photo_url: str | None = None
    comment: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    status: DeliveryStatus
    submitted_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None


class DeliveryStatsOut(BaseModel):
    total: int
    approved: int
    rejected: int
    pending: int
    total_points: int


class MaterialOut(BaseModel):
    material: Material
    points_per_kg: int
