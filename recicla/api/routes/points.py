from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...models.points import TransactionType
from ...models.user import User
from ...schemas.points import BalanceOut, PointsAdjust, TransactionOut
from ...services import points_ledger, user_service
from ..deps import get_db, get_current_user

router = APIRouter()


@router.get("/balance", response_model=BalanceOut)
def my_balance(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return BalanceOut(user_id=current.id, points=points_ledger.balance(db, current.id))


@router.get("/history", response_model=List[TransactionOut])
def my_history(
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return points_ledger.history(db, user_id=current.id, limit=limit, offset=offset)


@router.post("/users/{user_id}/adjust", response_model=TransactionOut, status_code=201)
def adjust_points(
    user_id: str,
    payload: PointsAdjust,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    user_service.require_admin(db, current.id)
    apply = points_ledger.debit if payload.amount < 0 else points_ledger.credit
    return apply(
        db,
        user_id=user_id,
        amount=abs(payload.amount),
        idempotency_key=payload.idempotency_key,
        type=TransactionType.ADJUST,
        reason=payload.reason or "Manual adjustment",
        created_by=current.id,
    )
