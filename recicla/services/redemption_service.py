"""
Redemption coordinator.

Requesting a redemption reserves one unit of stock, debits the reward cost
and records the request in a single transaction; if any step fails nothing
is kept. A redemption leaves ``requested`` exactly once. Leaving it through
``rejected`` or ``cancelled`` refunds the points and returns the unit in the
same transaction as the status change, and the refund is journalled under
the redemption id so it can never be paid twice.
"""
import logging
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..core.errors import InvalidState, NotFound, Unauthorized, Unavailable
from ..db.feed import record_change
from ..db.session import LedgerStore, atomic
from ..models import utcnow
from ..models.points import TransactionType
from ..models.reward import Redemption, RedemptionStatus, Reward
from . import points_ledger, stock_service
from .user_service import require_active, require_staff

logger = logging.getLogger(__name__)


def get_redemption(db: Session, redemption_id: str) -> Redemption:
    with atomic(db):
        red = db.get(Redemption, redemption_id, populate_existing=True)
    if not red:
        raise NotFound(f"Redemption {redemption_id} not found")
    return red


def request_redemption(db: Session, *, user_id: str, reward_id: str, comment: str | None = None) -> Redemption:
    with atomic(db):
        user = require_active(db, user_id)
        reward = db.get(Reward, reward_id, populate_existing=True)
        if not reward:
            raise NotFound(f"Reward {reward_id} not found")
        if not reward.is_active or not reward.in_validity_window():
            raise Unavailable(f"Reward {reward_id} is not currently offered")

        # stock first: Exhausted wins over InsufficientBalance when both apply
        stock_service.apply_reserve_one(db, reward.id)

        red = Redemption(
            user_id=user.id,
            user_display_name=user.display_name,
            reward_id=reward.id,
            reward_title=reward.title,
            points_spent=reward.cost_points,
            status=RedemptionStatus.REQUESTED,
            user_comment=comment,
        )
        db.add(red)
        db.flush()

        points_ledger.apply_debit(
            db,
            user_id=user.id,
            amount=reward.cost_points,
            type=TransactionType.SPEND,
            reason=f"Redeem '{reward.title}'",
            idempotency_key=points_ledger.redemption_debit_key(red.id),
            redemption_id=red.id,
            created_by=user.id,
        )
    logger.info(f"Redemption requested: id={red.id}, user={user_id}, reward={reward_id}, points={red.points_spent}")
    return red


def _transition(
    db: Session,
    redemption_id: str,
    *,
    allowed_from: tuple[RedemptionStatus, ...],
    values: dict,
) -> Redemption:
    result = db.execute(
        update(Redemption)
        .where(Redemption.id == redemption_id, Redemption.status.in_(allowed_from))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = db.execute(select(Redemption.status).where(Redemption.id == redemption_id)).scalar_one_or_none()
        if current is None:
            raise NotFound(f"Redemption {redemption_id} not found")
        raise InvalidState(f"Redemption {redemption_id} is {current}; expected {', '.join(allowed_from)}")
    record_change(db, Redemption.__tablename__, redemption_id)
    return db.get(Redemption, redemption_id, populate_existing=True)


def _refund(db: Session, red: Redemption, *, actor_id: str) -> None:
    # runs only right after a successful transition out of REQUESTED
    points_ledger.apply_credit(
        db,
        user_id=red.user_id,
        amount=red.points_spent,
        type=TransactionType.REFUND,
        reason=f"Refund for '{red.reward_title}' ({red.status})",
        idempotency_key=points_ledger.redemption_refund_key(red.id),
        redemption_id=red.id,
        created_by=actor_id,
    )
    stock_service.apply_release_one(db, red.reward_id)
    db.execute(
        update(Redemption)
        .where(Redemption.id == red.id, Redemption.refunded_at.is_(None))
        .values(refunded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.get(Redemption, red.id, populate_existing=True)


def review(
    db: Session, *,
    redemption_id: str,
    reviewer_id: str,
    approve: bool,
    reason: str | None = None,
    admin_comment: str | None = None,
) -> Redemption:
    target = RedemptionStatus.APPROVED if approve else RedemptionStatus.REJECTED
    values = {"status": target, "reviewed_by": reviewer_id, "reviewed_at": utcnow()}
    if not approve:
        values["rejection_reason"] = reason
    if admin_comment is not None:
        values["admin_comment"] = admin_comment

    with atomic(db):
        require_staff(db, reviewer_id)
        red = _transition(db, redemption_id, allowed_from=(RedemptionStatus.REQUESTED,), values=values)
        if not approve:
            _refund(db, red, actor_id=reviewer_id)
    logger.info(f"Redemption {redemption_id} {target} by {reviewer_id}")
    return red


def cancel(db: Session, *, redemption_id: str, user_id: str, comment: str | None = None) -> Redemption:
    values = {"status": RedemptionStatus.CANCELLED}
    if comment is not None:
        values["user_comment"] = comment
    with atomic(db):
        owner = db.execute(select(Redemption.user_id).where(Redemption.id == redemption_id)).scalar_one_or_none()
        if owner is None:
            raise NotFound(f"Redemption {redemption_id} not found")
        if owner != user_id:
            raise Unauthorized("You can only cancel your own redemptions")
        red = _transition(db, redemption_id, allowed_from=(RedemptionStatus.REQUESTED,), values=values)
        _refund(db, red, actor_id=user_id)
    logger.info(f"Redemption {redemption_id} cancelled by {user_id}")
    return red


def mark_delivered(
    db: Session, *,
    redemption_id: str,
    reviewer_id: str,
    receipt_url: str | None = None,
    admin_comment: str | None = None,
) -> Redemption:
    values = {"status": RedemptionStatus.DELIVERED, "delivered_at": utcnow()}
    if receipt_url is not None:
        values["receipt_url"] = receipt_url
    if admin_comment is not None:
        values["admin_comment"] = admin_comment
    with atomic(db):
        require_staff(db, reviewer_id)
        red = _transition(db, redemption_id, allowed_from=(RedemptionStatus.APPROVED,), values=values)
    logger.info(f"Redemption {redemption_id} delivered by {reviewer_id}")
    return red


def list_user_redemptions(db: Session, *, user_id: str) -> list[Redemption]:
    stmt = (
        select(Redemption)
        .where(Redemption.user_id == user_id)
        .order_by(Redemption.requested_at.desc())
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def list_pending_redemptions(db: Session) -> list[Redemption]:
    stmt = (
        select(Redemption)
        .where(Redemption.status.in_((RedemptionStatus.REQUESTED, RedemptionStatus.APPROVED)))
        .order_by(Redemption.requested_at.asc())
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def watch_user_redemptions(store: LedgerStore, user_id: str, callback: Callable[[list[Redemption]], None]) -> Callable[[], None]:
    return store.watch(
        Redemption.__tablename__,
        lambda db: list_user_redemptions(db, user_id=user_id),
        callback,
    )
