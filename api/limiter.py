"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Key selection is a pluggable strategy. RATE_LIMIT_KEY_STRATEGY picks an entry
from KEY_STRATEGIES at request time:
  ip       client address (default)
  api_key  SHA-256 of the X-API-Key header when present, else client address.
           Only the digest is used as the counter key so plaintext keys never
           sit in limiter storage.

The strategy only keys the default limit. Credential routes pass
key_func=get_remote_address to their own @limiter.limit() calls.
"""

import hashlib
from collections.abc import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from core.config import get_settings


def _api_key_or_ip(request: Request) -> str:
    raw_key = request.headers.get("X-API-Key", "")
    if raw_key:
        return "key:" + hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
    return get_remote_address(request)


KEY_STRATEGIES: dict[str, Callable[[Request], str]] = {
    "ip": get_remote_address,
    "api_key": _api_key_or_ip,
}


def select_key(request: Request) -> str:
    """Dispatch to the configured key strategy."""
    return KEY_STRATEGIES[get_settings().rate_limit_key_strategy](request)


def login_limit() -> str:
    return get_settings().login_rate_limit


def password_reset_limit() -> str:
    return get_settings().password_reset_rate_limit


limiter = Limiter(
    key_func=select_key,
    default_limits=[get_settings().default_rate_limit],
    storage_uri="memory://",
)
