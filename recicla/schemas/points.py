from datetime import datetime
from pydantic import BaseModel, Field
from ..models.points import TransactionType
from .common import ORMModel


class BalanceOut(BaseModel):
    user_id: str
    points: int


class PointsAdjust(BaseModel):
    amount: int = Field(description="Positive to credit, negative to debit")
    reason: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=128)


class TransactionOut(ORMModel):
    id: str
    user_id: str
    amount: int
    balance_after: int
    type: TransactionType
    reason: str | None
    idempotency_key: str | None = None
    delivery_id: str | None = None
    redemption_id: str | None = None
    created_at: datetime
