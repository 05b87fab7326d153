"""
Points ledger: the only writer of ``users.points``.

Every mutation is a single guarded UPDATE executed inside the caller's
transaction, plus one journal row in ``points_transactions``. The
``apply_*`` functions never commit, so coordinators can combine them with
other writes; ``credit``/``debit`` are the standalone, committing variants.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import InsufficientBalance, InvalidInput, NotFound
from ..db.feed import record_change
from ..db.session import atomic
from ..models.points import PointsTransaction, TransactionType
from ..models.user import User

logger = logging.getLogger(__name__)


def delivery_credit_key(delivery_id: str) -> str:
    return f"delivery:{delivery_id}:credit"


def redemption_debit_key(redemption_id: str) -> str:
    return f"redemption:{redemption_id}:debit"


def redemption_refund_key(redemption_id: str) -> str:
    return f"redemption:{redemption_id}:refund"


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidInput(f"Point amounts must be positive integers, got {amount!r}")


def _current_points(db: Session, user_id: str) -> int | None:
    return db.execute(select(User.points).where(User.id == user_id)).scalar_one_or_none()


def find_applied(db: Session, idempotency_key: str) -> PointsTransaction | None:
    """Journal entry already written under ``idempotency_key``, if any."""
    with atomic(db):
        return db.execute(
            select(PointsTransaction).where(PointsTransaction.idempotency_key == idempotency_key)
        ).scalar_one_or_none()


def balance(db: Session, user_id: str) -> int:
    with atomic(db):
        points = _current_points(db, user_id)
    if points is None:
        raise NotFound(f"User {user_id} not found")
    return points


def apply_credit(
    db: Session, *,
    user_id: str,
    amount: int,
    type: TransactionType = TransactionType.EARN,
    reason: str | None = None,
    idempotency_key: str | None = None,
    delivery_id: str | None = None,
    redemption_id: str | None = None,
    created_by: str | None = None,
) -> PointsTransaction:
    _check_amount(amount)
    if idempotency_key:
        existing = find_applied(db, idempotency_key)
        if existing:
            logger.info(f"Credit {idempotency_key} already applied as {existing.id}; skipping")
            return existing

    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound(f"User {user_id} not found")

    txn = PointsTransaction(
        user_id=user_id,
        amount=amount,
        balance_after=_current_points(db, user_id),
        type=type,
        reason=reason,
        idempotency_key=idempotency_key,
        delivery_id=delivery_id,
        redemption_id=redemption_id,
        created_by=created_by,
    )
    db.add(txn)
    db.flush()
    record_change(db, User.__tablename__, user_id)
    logger.info(f"Credited {amount} points to user {user_id} ({type}), balance {txn.balance_after}")
    return txn


def apply_debit(
    db: Session, *,
    user_id: str,
    amount: int,
    type: TransactionType = TransactionType.SPEND,
    reason: str | None = None,
    idempotency_key: str | None = None,
    redemption_id: str | None = None,
    created_by: str | None = None,
) -> PointsTransaction:
    _check_amount(amount)
    if idempotency_key:
        existing = find_applied(db, idempotency_key)
        if existing:
            logger.info(f"Debit {idempotency_key} already applied as {existing.id}; skipping")
            return existing

    # check and decrement in one statement; a concurrent debit cannot slip in between
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.points >= amount)
        .values(points=User.points - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = _current_points(db, user_id)
        if current is None:
            raise NotFound(f"User {user_id} not found")
        raise InsufficientBalance(f"User {user_id} has {current} points but {amount} are required")

    txn = PointsTransaction(
        user_id=user_id,
        amount=-amount,
        balance_after=_current_points(db, user_id),
        type=type,
        reason=reason,
        idempotency_key=idempotency_key,
        redemption_id=redemption_id,
        created_by=created_by,
    )
    db.add(txn)
    db.flush()
    record_change(db, User.__tablename__, user_id)
    logger.info(f"Debited {amount} points from user {user_id} ({type}), balance {txn.balance_after}")
    return txn


def _run_keyed(db: Session, apply, idempotency_key: str | None, **kwargs) -> PointsTransaction:
    try:
        with atomic(db):
            txn = apply(db, idempotency_key=idempotency_key, **kwargs)
        return txn
    except IntegrityError:
        # lost a race against a concurrent application of the same key
        if not idempotency_key:
            raise
        existing = find_applied(db, idempotency_key)
        if existing is None:
            raise
        logger.info(f"{idempotency_key} applied concurrently as {existing.id}")
        return existing


def credit(db: Session, *, user_id: str, amount: int, idempotency_key: str | None = None, **kwargs) -> PointsTransaction:
    """Add ``amount`` points and commit. Re-running with the same key returns the first entry."""
    return _run_keyed(db, apply_credit, idempotency_key, user_id=user_id, amount=amount, **kwargs)


def debit(db: Session, *, user_id: str, amount: int, idempotency_key: str | None = None, **kwargs) -> PointsTransaction:
    """Remove ``amount`` points and commit, failing with InsufficientBalance instead of going negative."""
    return _run_keyed(db, apply_debit, idempotency_key, user_id=user_id, amount=amount, **kwargs)


def history(db: Session, *, user_id: str, limit: int = 50, offset: int = 0) -> list[PointsTransaction]:
    stmt = (
        select(PointsTransaction)
        .where(PointsTransaction.user_id == user_id)
        .order_by(PointsTransaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())
