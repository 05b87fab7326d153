from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from ..models.user import UserRole
from .common import ORMModel


class UserRegister(BaseModel):
    display_name: str = Field(min_length=1, max_length=128)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class UserOut(ORMModel):
    id: str
    email: Optional[str] = None
    display_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    photo_url: Optional[str] = None
    points: int
    role: UserRole
    is_active: bool
    created_at: datetime


class UserUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    photo_url: Optional[str] = None


class RoleUpdate(BaseModel):
    role: UserRole


class ActiveUpdate(BaseModel):
    active: bool


class RankingEntry(ORMModel):
    id: str
    display_name: str
    photo_url: Optional[str] = None
    points: int
