"""JWT helpers for the identity boundary.

Login and refresh flows live in the identity service; this module only
mints short-lived access tokens (used by seed scripts and tests) and
decodes incoming bearer tokens.
"""
from datetime import datetime, timedelta, timezone

from jose import jwt

from reimburse.core.config import settings


def create_access_token(subject: str, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    return jwt.encode(
        {"sub": subject, "role": role, "exp": expire, "type": "access"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
