"""Rate limiter singleton — import from here to avoid circular deps.

Workflow mutations are keyed on the caller's bearer token when present so
that several users behind one NAT do not share a bucket.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from reimburse.core.config import settings


def _rate_limit_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:]
    return get_remote_address(request)


limiter = Limiter(key_func=_rate_limit_key, default_limits=[settings.RATE_LIMIT_DEFAULT])
