"""Owner access tokens: HS256 JWTs whose subject is the owner id."""
from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings

REQUIRED_CLAIMS = ["sub", "exp"]


def create_access_token(owner_id: int) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(owner_id),
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Return the claims of a valid token, or None if it is expired, forged or incomplete."""
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.PyJWTError:
        return None
