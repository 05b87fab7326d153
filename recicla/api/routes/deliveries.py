from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from ...models.delivery import Material
from ...models.user import User
from ...schemas.delivery import DeliveryCreate, DeliveryOut, DeliveryReview, MaterialOut
from ...schemas.points import TransactionOut
from ...services import delivery_service
from ...services.storage import ObjectStorage
from ..deps import get_db, get_current_user, get_staff_user, get_storage

router = APIRouter()


@router.get("/materials", response_model=List[MaterialOut])
def materials():
    return [MaterialOut(material=m, points_per_kg=m.points_per_kg) for m in Material]


@router.post("", response_model=DeliveryOut, status_code=201)
def submit_delivery(
    payload: DeliveryCreate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return delivery_service.submit(db, user_id=current.id, **payload.model_dump())


@router.get("/mine", response_model=List[DeliveryOut])
def my_deliveries(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return delivery_service.list_user_deliveries(db, user_id=current.id)


@router.get("/pending", response_model=List[DeliveryOut])
def pending_deliveries(db: Session = Depends(get_db), staff: User = Depends(get_staff_user)):
    return delivery_service.list_pending_deliveries(db)


@router.get("/{delivery_id}", response_model=DeliveryOut)
def get_delivery(delivery_id: str, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    d = delivery_service.get_delivery(db, delivery_id)
    if d.user_id != current.id and not current.is_staff:
        raise HTTPException(403, "Not your delivery")
    return d


@router.post("/{delivery_id}/review", response_model=DeliveryOut)
def review_delivery(
    delivery_id: str,
    payload: DeliveryReview,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return delivery_service.validate(
        db,
        delivery_id=delivery_id,
        reviewer_id=current.id,
        approve=payload.approve,
        reason=payload.reason,
    )


@router.post("/{delivery_id}/reconcile", response_model=Optional[TransactionOut])
def reconcile_delivery(delivery_id: str, db: Session = Depends(get_db), staff: User = Depends(get_staff_user)):
    return delivery_service.reconcile_credit(db, delivery_id=delivery_id)


@router.delete("/{delivery_id}", status_code=204)
def withdraw_delivery(
    delivery_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
):
    delivery_service.withdraw(db, delivery_id=delivery_id, requesting_user_id=current.id, storage=storage)
    return Response(status_code=204)
