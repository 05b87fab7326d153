from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...models.user import User
from ...schemas.reward import (
    RedemptionCancel,
    RedemptionCreate,
    RedemptionDeliver,
    RedemptionOut,
    RedemptionReview,
)
from ...services import redemption_service
from ..deps import get_db, get_current_user, get_staff_user

router = APIRouter()


@router.post("", response_model=RedemptionOut, status_code=201)
def request_redemption(
    payload: RedemptionCreate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return redemption_service.request_redemption(
        db, user_id=current.id, reward_id=payload.reward_id, comment=payload.comment
    )


@router.get("/mine", response_model=List[RedemptionOut])
def my_redemptions(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return redemption_service.list_user_redemptions(db, user_id=current.id)


@router.get("/pending", response_model=List[RedemptionOut])
def pending_redemptions(db: Session = Depends(get_db), staff: User = Depends(get_staff_user)):
    return redemption_service.list_pending_redemptions(db)


@router.get("/{redemption_id}", response_model=RedemptionOut)
def get_redemption(redemption_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    red = redemption_service.get_redemption(db, redemption_id)
    if red.user_id != current.id and not current.is_staff:
        raise HTTPException(403, "Not your redemption")
    return red


@router.post("/{redemption_id}/review", response_model=RedemptionOut)
def review_redemption(
    redemption_id: str,
    payload: RedemptionReview,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return redemption_service.review(
        db,
        redemption_id=redemption_id,
        reviewer_id=current.id,
        approve=payload.approve,
        reason=payload.reason,
        admin_comment=payload.admin_comment,
    )


@router.post("/{redemption_id}/cancel", response_model=RedemptionOut)
def cancel_redemption(
    redemption_id: str,
    payload: RedemptionCancel,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return redemption_service.cancel(db, redemption_id=redemption_id, user_id=current.id, comment=payload.comment)


@router.post("/{redemption_id}/deliver", response_model=RedemptionOut)
def deliver_redemption(
    redemption_id: str,
    payload: RedemptionDeliver,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return redemption_service.mark_delivered(
        db,
        redemption_id=redemption_id,
        reviewer_id=current.id,
        receipt_url=payload.receipt_url,
        admin_comment=payload.admin_comment,
    )
