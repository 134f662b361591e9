from __future__ import annotations

from datetime import datetime, timezone

import jwt


def token_expiry(token: str) -> datetime | None:
    """``exp`` claim of a JWT session token, or None for opaque tokens.

    The signature is not checked here; the server owns verification.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    if exp is None:
        return None
    try:
        return datetime.fromtimestamp(float(exp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def is_expired(token: str, now: datetime) -> bool:
    expiry = token_expiry(token)
    return expiry is not None and expiry <= now
