"""
auth/dependencies.py -- FastAPI Depends() adapters over auth/gate.py.

Each dependency reads the headers it needs, calls the AccessGate, and
returns the resulting AuthContext. Handlers receive the context as a
parameter; nothing is stored on request.state.

  get_current_context()   Bearer only; hard 401/403.
  flexible_auth(perm)     Bearer or X-API-Key; perm applies to API keys.
  get_optional_context()  Bearer or nothing; never fails.
  require_roles(*roles)   Bearer + role check.
  require_verified_email  Bearer + verified email.

Errors are AppError subclasses; api/main.py renders them.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/ or notify/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.gate import AccessGate, require_role, require_verified
from auth.models import AuthContext


def get_gate(request: Request) -> AccessGate:
    return request.app.state.gate


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def get_current_context(request: Request) -> AuthContext:
    """Require a valid Bearer access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(ctx: AuthContext = Depends(get_current_context)): ...
    """
    return get_gate(request).bearer(request.headers.get("Authorization"))


def get_optional_context(request: Request) -> AuthContext | None:
    return get_gate(request).optional(request.headers.get("Authorization"))


def flexible_auth(required_permission: str | None = None) -> Callable[[Request], AuthContext]:
    """Build a dependency that accepts Bearer or X-API-Key.

    Use as a FastAPI dependency:
        @router.post("/data")
        async def route(ctx: AuthContext = Depends(flexible_auth("write"))): ...
    """

    def dependency(request: Request) -> AuthContext:
        return get_gate(request).flexible(
            request.headers.get("Authorization"),
            request.headers.get("X-API-Key"),
            required_permission=required_permission,
            client_ip=client_ip(request),
            client_domain=request.url.hostname,
        )

    return dependency


def require_roles(*roles: str) -> Callable[[AuthContext], AuthContext]:
    """Build a dependency that requires a Bearer identity with one of roles."""

    def dependency(ctx: AuthContext = Depends(get_current_context)) -> AuthContext:
        return require_role(ctx, *roles)

    return dependency


require_admin = require_roles("admin")


def require_verified_email(ctx: AuthContext = Depends(get_current_context)) -> AuthContext:
    return require_verified(ctx)
