"""Authentication module: FastAPI dependencies around the identity provider.

Public interface:
    ``require_auth``       returns AuthContext or raises 401.
    ``ensure_same_user``   raises 401 when a request names another user.

The identity provider issues signed session tokens; this service only
verifies them. When ``settings.auth_enabled`` is False every request acts
as ``settings.dev_user_id`` so local development needs no provider.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .token_factory import verify_token
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated identity available to every endpoint."""

    user_id: str


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthContext:
    """Require a valid session token and return the caller's AuthContext."""
    if not settings.auth_enabled:
        return AuthContext(user_id=settings.dev_user_id)

    if credentials is None:
        raise AuthenticationError("missing session token")

    claims = verify_token(
        credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm
    )
    if claims is None:
        raise AuthenticationError("invalid or expired session token")

    return AuthContext(user_id=claims.sub)


def ensure_same_user(auth: AuthContext, claimed_user_id: Optional[str]) -> None:
    """Reject a request whose body or query names a different (or no) user.

    Independent of token verification: a valid session for one user must not
    be able to read or write on behalf of another.
    """
    if not claimed_user_id or claimed_user_id != auth.user_id:
        logger.warning(
            "Request user id does not match session",
            extra={"user_id": auth.user_id, "claimed_user_id": claimed_user_id},
        )
        raise AuthenticationError("user id mismatch")
