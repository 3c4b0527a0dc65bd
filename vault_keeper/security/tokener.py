"""
Tokener — issues and verifies bearer credentials.

Tokens are HS256 JWTs whose ``sub`` claim holds the user id.

Security Note:
    Never log tokens or the signing secret.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from ..conf import AUTH_SCHEME
from ..exceptions import Unauthenticated

logger = logging.getLogger("keeper.security")

ALGORITHM = "HS256"


class Tokener:
    """Stateless; safe for concurrent use."""

    def __init__(self, secret: str, lifetime: timedelta):
        if not secret:
            raise ValueError("Token secret cannot be empty")
        self._secret = secret
        self._lifetime = lifetime

    def issue(self, user_id: UUID) -> str:
        expires = datetime.now(timezone.utc) + self._lifetime
        return jwt.encode(
            {"sub": str(user_id), "exp": expires},
            self._secret,
            algorithm=ALGORITHM,
        )

    def user_id(self, token: str) -> UUID:
        """Decode ``token`` and return its subject.

        Raises:
            Unauthenticated: If the token is expired, badly signed or
                carries no valid subject.
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as err:
            raise Unauthenticated(f"invalid token: {err}") from err
        subject = claims.get("sub")
        if subject is None:
            raise Unauthenticated("token has no subject")
        try:
            return UUID(str(subject))
        except ValueError as err:
            raise Unauthenticated("token subject is not a user id") from err

    def authenticate(self, header: Optional[str]) -> UUID:
        """Resolve an ``Authorization`` header value to a user id."""
        if not header:
            raise Unauthenticated("missing authorization")
        scheme, _, token = header.partition(" ")
        if not token:
            raise Unauthenticated("bad authorization string")
        if scheme.lower() != AUTH_SCHEME.lower():
            raise Unauthenticated(f"request unauthenticated with {AUTH_SCHEME}")
        return self.user_id(token.strip())
