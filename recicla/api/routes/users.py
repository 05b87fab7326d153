from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...schemas.delivery import DeliveryStatsOut
from ...schemas.user import ActiveUpdate, RankingEntry, RoleUpdate, UserOut, UserRegister, UserUpdate
from ...services import delivery_service, user_service
from ...services.identity import IdentityProvider
from ...models.user import User
from ..deps import get_db, get_current_user, get_identity, get_staff_user

router = APIRouter()


@router.post("/register", response_model=UserOut, status_code=201)
def register(
    payload: UserRegister,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
):
    user_id = identity.current_user_id()
    if not user_id:
        raise HTTPException(401, "Invalid or missing token")
    return user_service.register_user(
        db,
        user_id=user_id,
        display_name=payload.display_name,
        email=payload.email or identity.email,
        phone=payload.phone,
        address=payload.address,
    )


@router.get("/me", response_model=UserOut)
def me(current: User = Depends(get_current_user)):
    return current


@router.patch("/me", response_model=UserOut)
def update_me(
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return user_service.update_profile(db, user_id=current.id, fields=payload.model_dump(exclude_unset=True))


@router.get("/me/stats", response_model=DeliveryStatsOut)
def my_stats(db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return delivery_service.user_stats(db, user_id=current.id)


@router.get("/ranking", response_model=List[RankingEntry])
def ranking(limit: int = 10, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    return user_service.ranking(db, limit=limit)


@router.get("/search", response_model=List[UserOut])
def search(prefix: str, db: Session = Depends(get_db), staff: User = Depends(get_staff_user)):
    return user_service.search_users(db, prefix=prefix)


@router.patch("/{user_id}/active", response_model=UserOut)
def set_active(
    user_id: str,
    payload: ActiveUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return user_service.set_active(db, user_id=user_id, active=payload.active, actor_id=current.id)


@router.patch("/{user_id}/role", response_model=UserOut)
def set_role(
    user_id: str,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return user_service.set_role(db, user_id=user_id, role=payload.role, actor_id=current.id)
