"""
Identity provider boundary.

Credentials and token issuance live with the external provider; the core only
needs to know who is calling. A bearer token is an HS256 JWT whose ``sub`` is
the user id.
"""
from typing import Protocol

import jwt

from ..core.config import settings


class IdentityProvider(Protocol):
    def current_user_id(self) -> str | None: ...

    def is_authenticated(self) -> bool: ...

    @property
    def email(self) -> str | None: ...


class BearerTokenIdentity:
    def __init__(self, token: str | None, *, secret: str | None = None, algorithm: str | None = None):
        self.claims: dict = {}
        if token:
            try:
                self.claims = jwt.decode(
                    token,
                    secret or settings.SECRET_KEY,
                    algorithms=[algorithm or settings.TOKEN_ALGORITHM],
                )
            except jwt.PyJWTError:
                self.claims = {}

    def current_user_id(self) -> str | None:
        sub = self.claims.get("sub")
        return str(sub) if sub else None

    def is_authenticated(self) -> bool:
        return self.current_user_id() is not None

    @property
    def email(self) -> str | None:
        return self.claims.get("email")
