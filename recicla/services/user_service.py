from typing import Callable

from sqlalchemy.orm import Session
from sqlalchemy import select
import logging

from ..core.config import settings
from ..core.errors import InvalidInput, NotFound, Unauthorized
from ..db.session import LedgerStore, atomic
from ..models.user import User, UserRole

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {"display_name", "phone", "address", "photo_url", "email"}


def get_user(db: Session, user_id: str) -> User:
    # points move through core UPDATEs, so never trust the identity map copy
    with atomic(db):
        user = db.get(User, user_id, populate_existing=True)
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def require_active(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    if not user.is_active:
        raise Unauthorized(f"User {user_id} is deactivated")
    return user


def require_staff(db: Session, user_id: str) -> User:
    with atomic(db):
        user = db.get(User, user_id)
    if not user or not user.is_active or not user.is_staff:
        raise Unauthorized("Only operators and administrators can review")
    return user


def require_admin(db: Session, user_id: str) -> User:
    with atomic(db):
        user = db.get(User, user_id)
    if not user or not user.is_active or user.role != UserRole.ADMIN:
        raise Unauthorized("Only administrators can do this")
    return user


def register_user(
    db: Session, *,
    user_id: str,
    display_name: str,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
) -> User:
    """Create the profile for an identity seen for the first time; returns the existing one otherwise."""
    if not display_name or not display_name.strip():
        raise InvalidInput("A display name is required")
    with atomic(db):
        existing = db.get(User, user_id)
        if existing:
            return existing
        logger.info(f"Registering user: id={user_id}, email={email}")
        user = User(
            id=user_id,
            display_name=display_name.strip(),
            email=email,
            phone=phone,
            address=address,
            points=0,
            role=UserRole.CITIZEN,
            is_active=True,
        )
        db.add(user)
    return user


def update_profile(db: Session, *, user_id: str, fields: dict) -> User:
    unknown = set(fields) - PROFILE_FIELDS
    if unknown:
        raise InvalidInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "display_name" in fields:
        name = fields["display_name"]
        if name is None or not name.strip():
            raise InvalidInput("A display name is required")
        fields = {**fields, "display_name": name.strip()}
    with atomic(db):
        user = get_user(db, user_id)
        for name, value in fields.items():
            setattr(user, name, value)
    return user


def set_active(db: Session, *, user_id: str, active: bool, actor_id: str) -> User:
    with atomic(db):
        require_admin(db, actor_id)
        user = get_user(db, user_id)
        user.is_active = active
    logger.info(f"User {user_id} {'reactivated' if active else 'deactivated'} by {actor_id}")
    return user


def set_role(db: Session, *, user_id: str, role: UserRole, actor_id: str) -> User:
    with atomic(db):
        require_admin(db, actor_id)
        user = get_user(db, user_id)
        user.role = role
    logger.info(f"User {user_id} is now {role} (by {actor_id})")
    return user


def ranking(db: Session, *, limit: int | None = None) -> list[User]:
    stmt = (
        select(User)
        .where(User.role == UserRole.CITIZEN, User.is_active.is_(True))
        .order_by(User.points.desc(), User.display_name.asc())
        .limit(limit or settings.RANKING_LIMIT)
        .execution_options(populate_existing=True)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def search_users(db: Session, *, prefix: str, limit: int | None = None) -> list[User]:
    stmt = (
        select(User)
        .where(User.display_name.startswith(prefix, autoescape=True))
        .order_by(User.display_name.asc())
        .limit(limit or settings.SEARCH_LIMIT)
    )
    with atomic(db):
        return list(db.execute(stmt).scalars())


def watch_user(store: LedgerStore, user_id: str, callback: Callable[[User], None]) -> Callable[[], None]:
    """Live profile: ``callback`` gets the user now and after every committed change to users, balance included."""
    return store.watch(User.__tablename__, lambda db: get_user(db, user_id), callback)
