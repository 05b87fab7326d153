"""
Delivery validation engine.

A delivery is submitted ``pending`` and reviewed exactly once, to
``approved`` or ``rejected``. Approval moves the status and credits the
owner's points in the same transaction; the status change is a guarded
UPDATE, so two reviewers racing on the same delivery cannot both win.
The credit is journalled under the delivery id, which lets
``reconcile_credit`` repair an approval whose credit is missing without
ever paying twice.
"""
import logging
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from ..db.feed import DELETED, record_change
from ..db.session import LedgerStore, atomic
from ..models import utcnow
from ..models.delivery import Delivery, DeliveryStatus, Material, compute_points
from ..models.points import PointsTransaction, TransactionType
from . import points_ledger
from .storage import ObjectStorage, StorageError
from .user_service import require_active, require_staff

logger = logging.getLogger(__name__)


def _check_weight(weight_kg: float) -> None:
    if weight_kg is None or not (settings.MIN_WEIGHT_KG <= weight_kg <= settings.MAX_WEIGHT_KG):
        raise InvalidInput(
            f"Weight must be between {settings.MIN_WEIGHT_KG} and {settings.MAX_WEIGHT_KG} kg, got {weight_kg}"
        )


def get_delivery(db: Session, delivery_id: str) -> Delivery:
    with atomic(db):
        d = db.get(Delivery, delivery_id, populate_existing=True)
    if not d:
        raise NotFound(f"Delivery {delivery_id} not found")
    return d


def submit(
    db: Session, *,
    user_id: str,
    material: Material,
    weight_kg: float,
    photo_url: str | None = None,
    comment: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Delivery:
    _check_weight(weight_kg)
    try:
        material = Material(material)
    except ValueError:
        raise InvalidInput(f"Unknown material: {material}")
    with atomic(db):
        user = require_active(db, user_id)
        d = Delivery(
            user_id=user.id,
            user_display_name=user.display_name,
            material=material,
            weight_kg=weight_kg,
            points=compute_points(material, weight_kg),
            photo_url=photo_url,
            comment=comment,
            latitude=latitude,
            longitude=longitude,
            status=DeliveryStatus.PENDING,
        )
        db.add(d)
    logger.info(f"Delivery submitted: id={d.id}, user={user_id}, {weight_kg} kg {material}, {d.points} points")
    return d


def validate(
    db: Session, *,
    delivery_id: str,
    reviewer_id: str,
    approve: bool,
    reason: str | None = None,
) -> Delivery:
    """Review a pending delivery once. Approval credits ``delivery.points`` to its owner."""
    target = DeliveryStatus.APPROVED if approve else DeliveryStatus.REJECTED
    with atomic(db):
        require_staff(db, reviewer_id)
        values = {"status": target, "reviewed_by": reviewer_id, "reviewed_at": utcnow()}
        if not approve:
            values["rejection_reason"] = reason
        result = db.execute(
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status == DeliveryStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = db.execute(select(Delivery.status).where(Delivery.id == delivery_id)).scalar_one_or_none()
            if current is None:
                raise NotFound(f"Delivery {delivery_id} not found")
            raise InvalidState(f"Delivery {delivery_id} was already reviewed ({current})")
        record_change(db, Delivery.__tablename__, delivery_id)

        d = db.get(Delivery, delivery_id, populate_existing=True)
        if approve and d.points > 0:
            points_ledger.apply_credit(
                db,
                user_id=d.user_id,
                amount=d.points,
                type=TransactionType.EARN,
                reason=f"Delivery of {d.weight_kg} kg {d.material} approved",
                idempotency_key=points_ledger.delivery_credit_key(d.id),
                delivery_id=d.id,
                created_by=reviewer_id,
            )
    logger.info(f"Delivery {delivery_id} {target} by {reviewer_id}")
    return d


def reconcile_credit(db: Session, *, delivery_id: str) -> PointsTransaction | None:
    """
    Make sure an approved delivery has been credited exactly once.

    Returns the credit journal entry (new or pre-existing); ``None`` for
    deliveries that are not approved or are worth zero points.
    """
    with atomic(db):
        d = db.get(Delivery, delivery_id, populate_existing=True)
        if not d:
            raise NotFound(f"Delivery {delivery_id} not found")
        if d.status != DeliveryStatus.APPROVED or d.points <= 0:
            return None
        key = points_ledger.delivery_credit_key(d.id)
        existing = points_ledger.find_applied(db, key)
        if existing:
            return existing
        logger.warning(f"Approved delivery {delivery_id} had no credit; applying it now")
        return points_ledger.apply_credit(
            db,
            user_id=d.user_id,
            amount=d.points,
            type=TransactionType.EARN,
            reason=f"Delivery of {d.weight_kg} kg {d.material} approved",
            idempotency_key=key,
            delivery_id=d.id,
            created_by=d.reviewed_by,
        )


def withdraw(db: Session, *, delivery_id: str, requesting_user_id: str, storage: ObjectStorage | None = None) -> None:
    """Delete a still-pending delivery owned by the caller, then drop its photo if possible."""
    with atomic(db):
        d = db.get(Delivery, delivery_id, populate_existing=True)
        if not d:
            raise NotFound(f"Delivery {delivery_id} not found")
        if d.user_id != requesting_user_id:
            raise Unauthorized("You can only withdraw your own deliveries")
        photo_url = d.photo_url
        result = db.execute(
            delete(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status == DeliveryStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidState("Only pending deliveries can be withdrawn")
        db.expunge(d)
        record_change(db, Delivery.__tablename__, delivery_id, DELETED)
    logger.info(f"Delivery {delivery_id} withdrawn by {requesting_user_id}")

    if photo_url and storage is not None:
        try:
            storage.delete(photo_url)
        except StorageError as e:
            logger.warning(f"Could not delete photo for withdrawn delivery {delivery_id}: {e}")


def list_user_deliveries(db: Session, *, user_id: str) -> list[Delivery]:
    stmt = (
        select(Delivery)
        .where(Delivery.user_id == user_id)
        .order_by(Delivery.submitted_at.desc())
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def list_pending_deliveries(db: Session) -> list[Delivery]:
    stmt = (
        select(Delivery)
        .where(Delivery.status == DeliveryStatus.PENDING)
        .order_by(Delivery.submitted_at.asc())
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def user_stats(db: Session, *, user_id: str) -> dict[str, int]:
    stmt = (
        select(Delivery.status, func.count(Delivery.id), func.coalesce(func.sum(Delivery.points), 0))
        .where(Delivery.user_id == user_id)
        .group_by(Delivery.status)
    )
    with atomic(db):
        rows = db.execute(stmt).all()
    counts = {status: (count, points) for status, count, points in rows}
    return {
        "total": sum(count for count, _ in counts.values()),
        "approved": counts.get(DeliveryStatus.APPROVED, (0, 0))[0],
        "rejected": counts.get(DeliveryStatus.REJECTED, (0, 0))[0],
        "pending": counts.get(DeliveryStatus.PENDING, (0, 0))[0],
        "total_points": int(counts.get(DeliveryStatus.APPROVED, (0, 0))[1]),
    }


def watch_user_deliveries(store: LedgerStore, user_id: str, callback: Callable[[list[Delivery]], None]) -> Callable[[], None]:
    return store.watch(
        Delivery.__tablename__,
        lambda db: list_user_deliveries(db, user_id=user_id),
        callback,
    )


def watch_pending_deliveries(store: LedgerStore, callback: Callable[[list[Delivery]], None]) -> Callable[[], None]:
    return store.watch(Delivery.__tablename__, list_pending_deliveries, callback)
