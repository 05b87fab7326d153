"""
Reward catalog and stock.

``available_quantity`` is only ever changed here. ``UNLIMITED_STOCK`` is
excluded by the WHERE clause of both guarded updates, so it is never touched
by the arithmetic.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..core.errors import Exhausted, InvalidInput, NotFound
from ..db.feed import record_change
from ..db.session import LedgerStore, atomic
from ..models.reward import Reward, RewardCategory, UNLIMITED_STOCK
from .user_service import require_admin

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "title",
    "description",
    "category",
    "cost_points",
    "monetary_value",
    "image_url",
    "available_quantity",
    "requirements",
    "valid_from",
    "valid_until",
}

# columns that cannot be cleared through an update
REQUIRED_FIELDS = {"title", "category", "cost_points", "monetary_value", "available_quantity", "requirements"}


def _check_quantity(quantity: int) -> None:
    if quantity != UNLIMITED_STOCK and quantity < 0:
        raise InvalidInput(f"Quantity must be non-negative or {UNLIMITED_STOCK} for unlimited, got {quantity}")


def _check_cost(cost_points: int) -> None:
    if cost_points <= 0:
        raise InvalidInput("Reward cost must be a positive number of points")


def get_reward(db: Session, reward_id: str) -> Reward:
    with atomic(db):
        reward = db.get(Reward, reward_id, populate_existing=True)
    if not reward:
        raise NotFound(f"Reward {reward_id} not found")
    return reward


def _reload(db: Session, reward_id: str) -> Reward:
    return db.get(Reward, reward_id, populate_existing=True)


def create_reward(
    db: Session, *,
    created_by: str,
    title: str,
    cost_points: int,
    description: str | None = None,
    category: RewardCategory = RewardCategory.SCHOLARSHIP,
    monetary_value: float = 0.0,
    image_url: str | None = None,
    available_quantity: int = UNLIMITED_STOCK,
    requirements: list[str] | None = None,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
) -> Reward:
    _check_cost(cost_points)
    _check_quantity(available_quantity)
    r = Reward(
        title=title,
        description=description,
        category=category,
        cost_points=cost_points,
        monetary_value=monetary_value,
        image_url=image_url,
        available_quantity=available_quantity,
        requirements=list(requirements or []),
        valid_from=valid_from,
        valid_until=valid_until,
        created_by=created_by,
    )
    with atomic(db):
        require_admin(db, created_by)
        db.add(r)
    logger.info(f"Reward created: id={r.id}, title={title!r}, cost={cost_points}, quantity={available_quantity}")
    return r


def apply_reserve_one(db: Session, reward_id: str) -> None:
    result = db.execute(
        update(Reward)
        .where(Reward.id == reward_id, Reward.available_quantity > 0)
        .values(available_quantity=Reward.available_quantity - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        record_change(db, Reward.__tablename__, reward_id)
        return
    quantity = db.execute(select(Reward.available_quantity).where(Reward.id == reward_id)).scalar_one_or_none()
    if quantity is None:
        raise NotFound(f"Reward {reward_id} not found")
    if quantity == UNLIMITED_STOCK:
        return
    raise Exhausted(f"Reward {reward_id} is out of stock")


def apply_release_one(db: Session, reward_id: str) -> None:
    result = db.execute(
        update(Reward)
        .where(Reward.id == reward_id, Reward.available_quantity != UNLIMITED_STOCK)
        .values(available_quantity=Reward.available_quantity + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        record_change(db, Reward.__tablename__, reward_id)
        return
    if db.execute(select(Reward.id).where(Reward.id == reward_id)).scalar_one_or_none() is None:
        raise NotFound(f"Reward {reward_id} not found")


def reserve_one(db: Session, reward_id: str) -> Reward:
    """Take one unit of stock, or fail with Exhausted. Unlimited rewards are left untouched."""
    with atomic(db):
        apply_reserve_one(db, reward_id)
        reward = _reload(db, reward_id)
    logger.info(f"Reserved one unit of reward {reward_id}, remaining {reward.available_quantity}")
    return reward


def release_one(db: Session, reward_id: str) -> Reward:
    """Return one unit of stock. Unlimited rewards are left untouched."""
    with atomic(db):
        apply_release_one(db, reward_id)
        reward = _reload(db, reward_id)
    logger.info(f"Released one unit of reward {reward_id}, remaining {reward.available_quantity}")
    return reward


def set_active(db: Session, *, reward_id: str, active: bool, actor_id: str) -> Reward:
    with atomic(db):
        require_admin(db, actor_id)
        reward = get_reward(db, reward_id)
        reward.is_active = active
    logger.info(f"Reward {reward_id} {'activated' if active else 'deactivated'} by {actor_id}")
    return reward


def update_reward(db: Session, *, reward_id: str, fields: dict, actor_id: str) -> Reward:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    cleared = sorted(name for name in REQUIRED_FIELDS & set(fields) if fields[name] is None)
    if cleared:
        raise InvalidInput(f"Fields cannot be cleared: {', '.join(cleared)}")
    if "available_quantity" in fields:
        _check_quantity(fields["available_quantity"])
    if "cost_points" in fields:
        _check_cost(fields["cost_points"])

    with atomic(db):
        require_admin(db, actor_id)
        reward = get_reward(db, reward_id)
        for name, value in fields.items():
            setattr(reward, name, value)
    logger.info(f"Reward {reward_id} updated by {actor_id}: {sorted(fields)}")
    return reward


def list_active_rewards(db: Session) -> list[Reward]:
    stmt = (
        select(Reward)
        .where(Reward.is_active.is_(True))
        .order_by(Reward.cost_points.asc())
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def list_available_rewards(db: Session) -> list[Reward]:
    return [r for r in list_active_rewards(db) if r.is_available()]


def watch_active_rewards(store: LedgerStore, callback: Callable[[list[Reward]], None]) -> Callable[[], None]:
    return store.watch(Reward.__tablename__, list_active_rewards, callback)
