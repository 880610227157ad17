"""Pure functions for minting and verifying session tokens.

The identity provider signs HS256 JWTs with a secret shared with this
service. Only the ``sub`` (user id) and ``exp`` claims matter here; any
other claims are ignored. ``create_token`` exists for tests and for
issuing local development sessions.
"""

import hashlib
import hmac
import base64
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

TOKEN_ISSUER = "droply"


@dataclass(frozen=True)
class SessionClaims:
    """Verified session token claims. Immutable."""
    sub: str
    exp: datetime
    issuer: str = TOKEN_ISSUER


def create_token(
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
    issuer: str = TOKEN_ISSUER,
) -> str:
    """Create a signed session token for *subject*.

    Args:
        subject: User id carried in the ``sub`` claim.
        secret: HMAC signing key.
        algorithm: Only HS256 supported.
        expires_minutes: Minutes until expiry. Negative values mint an
            already-expired token.
        issuer: Value of the ``iss`` claim.

    Returns:
        Encoded JWT string.
    """
    if algorithm != "HS256":
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    now = time.time()
    claims = {
        "sub": subject,
        "iat": int(now),
        "exp": int(now + expires_minutes * 60),
        "iss": issuer,
    }

    header = {"alg": "HS256", "typ": "JWT"}
    segments = [
        _b64encode(json.dumps(header).encode()),
        _b64encode(json.dumps(claims).encode()),
    ]
    signing_input = b".".join(segments)
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    segments.append(_b64encode(signature))
    return b".".join(segments).decode()


def verify_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[SessionClaims]:
    """Verify a session token and return its claims.

    Returns ``None`` on any failure (bad signature, wrong algorithm, expired,
    missing subject, malformed) rather than raising. The caller turns
    absence into a 401.
    """
    if algorithm != "HS256":
        return None
    try:
        parts = token.encode().split(b".")
        if len(parts) != 3:
            return None

        header = json.loads(_b64decode(parts[0]))
        if header.get("alg") != "HS256":
            return None

        signing_input = parts[0] + b"." + parts[1]
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        actual_sig = _b64decode(parts[2])

        if not hmac.compare_digest(expected_sig, actual_sig):
            return None

        claims = json.loads(_b64decode(parts[1]))

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return None

        exp = claims.get("exp", 0)
        if time.time() > exp:
            return None

        return SessionClaims(
            sub=subject,
            exp=datetime.fromtimestamp(exp, tz=timezone.utc),
            issuer=claims.get("iss", ""),
        )
    except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError, IndexError):
        return None


# --- base64url helpers (no padding, URL-safe) ---

def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _b64decode(data: bytes) -> bytes:
    padding = 4 - len(data) % 4
    if padding != 4:
        data += b"=" * padding
    return base64.urlsafe_b64decode(data)
