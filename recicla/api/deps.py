from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from ..core.errors import NotFound
from ..db.session import LedgerStore
from ..models.user import User
from ..services import user_service
from ..services.identity import BearerTokenIdentity, IdentityProvider
from ..services.storage import LocalObjectStorage, ObjectStorage

bearer_scheme = HTTPBearer(auto_error=False)


def get_store(request: Request) -> LedgerStore:
    return request.app.state.store


def get_db(store: LedgerStore = Depends(get_store)) -> Generator[Session, None, None]:
    db = store.session()
    try:
        yield db
    finally:
        db.close()


def get_storage(request: Request) -> ObjectStorage:
    return getattr(request.app.state, "storage", None) or LocalObjectStorage()


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> IdentityProvider:
    return BearerTokenIdentity(credentials.credentials if credentials else None)


def get_current_user_id(identity: IdentityProvider = Depends(get_identity)) -> str:
    user_id = identity.current_user_id()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing token")
    return user_id


def get_current_user(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)) -> User:
    try:
        user = user_service.get_user(db, user_id)
    except NotFound:
        raise HTTPException(status_code=401, detail="Unknown user; register first")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User is deactivated")
    return user


def get_staff_user(current: User = Depends(get_current_user)) -> User:
    if not current.is_staff:
        raise HTTPException(403, "Only operators and administrators can do this")
    return current
