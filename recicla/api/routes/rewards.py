from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...models.user import User
from ...schemas.reward import RewardActive, RewardCreate, RewardOut, RewardUpdate
from ...services import stock_service
from ..deps import get_db, get_current_user

router = APIRouter()


@router.get("", response_model=List[RewardOut])
def list_rewards(available_only: bool = False, db: Session = Depends(get_db)):
    if available_only:
        return stock_service.list_available_rewards(db)
    return stock_service.list_active_rewards(db)


@router.post("", response_model=RewardOut, status_code=201)
def create_reward(
    payload: RewardCreate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return stock_service.create_reward(db, created_by=current.id, **payload.model_dump())


@router.get("/{reward_id}", response_model=RewardOut)
def get_reward(reward_id: str, db: Session = Depends(get_db)):
    return stock_service.get_reward(db, reward_id)


@router.patch("/{reward_id}", response_model=RewardOut)
def update_reward(
    reward_id: str,
    payload: RewardUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return stock_service.update_reward(
        db,
        reward_id=reward_id,
        fields=payload.model_dump(exclude_unset=True),
        actor_id=current.id,
    )


@router.patch("/{reward_id}/active", response_model=RewardOut)
def set_reward_active(
    reward_id: str,
    payload: RewardActive,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    return stock_service.set_active(db, reward_id=reward_id, active=payload.active, actor_id=current.id)
