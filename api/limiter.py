"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. The key is a SHA-256 of the client IP, so the limiter's storage never
holds raw addresses.
"""

import hashlib

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def hashed_remote_address(request) -> str:
    return hashlib.sha256(get_remote_address(request).encode("utf-8")).hexdigest()


def auth_rate_limit() -> str:
    """Limit for the auth form routes. slowapi evaluates it per request."""
    return get_settings().auth_rate_limit


limiter = Limiter(key_func=hashed_remote_address, storage_uri="memory://")
