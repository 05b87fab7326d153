from enum import StrEnum
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from ..db.base_class import Base
from . import utcnow


class UserRole(StrEnum):
    CITIZEN = "citizen"
    OPERATOR = "operator"
    ADMIN = "admin"


STAFF_ROLES = (UserRole.OPERATOR, UserRole.ADMIN)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("points >= 0", name="ck_users_points_non_negative"),)

    # issued by the identity provider, never generated here
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    display_name: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    address: Mapped[Optional[str]] = mapped_column(String(255))
    photo_url: Mapped[Optional[str]] = mapped_column(String(512))

    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    role: Mapped[UserRole] = mapped_column(default=UserRole.CITIZEN, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def has_enough_points(self, required: int) -> bool:
        return self.points >= required
