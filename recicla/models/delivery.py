from decimal import Decimal, ROUND_FLOOR
from enum import StrEnum
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, Integer, Float, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base_class import Base
from . import utcnow


class Material(StrEnum):
    PET = "pet"
    PLASTIC = "plastic"
    GLASS = "glass"
    PAPER = "paper"
    METAL = "metal"
    ELECTRONIC = "electronic"
    ORGANIC = "organic"

    @property
    def points_per_kg(self) -> int:
        return MATERIAL_RATES[self]


MATERIAL_RATES: dict[Material, int] = {
    Material.PET: 10,
    Material.PLASTIC: 8,
    Material.GLASS: 5,
    Material.PAPER: 3,
    Material.METAL: 15,
    Material.ELECTRONIC: 20,
    Material.ORGANIC: 2,
}


def compute_points(material: Material, weight_kg: float) -> int:
    """floor(weight x rate), computed in decimal so 0.3 kg of PET is 3 points, not 2."""
    raw = Decimal(str(weight_kg)) * MATERIAL_RATES[material]
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Delivery(Base):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    user_display_name: Mapped[str] = mapped_column(String(128), nullable=False)

    material: Mapped[Material] = mapped_column(nullable=False)
    weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    photo_url: Mapped[str | None] = mapped_column(String(512))
    comment: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    status: Mapped[DeliveryStatus] = mapped_column(default=DeliveryStatus.PENDING, index=True)
    submitted_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    @property
    def is_reviewed(self) -> bool:
        return self.status != DeliveryStatus.PENDING
