"""
api/routes/v1/common.py -- Small mapping helpers shared by the v1 routers.

Domain dataclasses in, transport models out. No business rules here.
"""

from __future__ import annotations

from fastapi import Request

from api.models import (
    AccountResponse,
    ApiKeyContextResponse,
    AuthResponse,
    MeResponse,
    PaginationMeta,
    TokenPairResponse,
)
from auth.models import AuthContext, AuthResult, Page


def request_meta(request: Request) -> tuple[str | None, str | None]:
    """Return (client ip, user agent) for session and activity records."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("User-Agent")


def auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        account=AccountResponse.from_account(result.account),
        tokens=TokenPairResponse(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            token_type=result.tokens.token_type,
        ),
    )


def me_response(ctx: AuthContext) -> MeResponse:
    identity = ctx.identity
    api_key = None
    if ctx.api_key is not None:
        api_key = ApiKeyContextResponse(id=ctx.api_key.id, name=ctx.api_key.name, permissions=ctx.api_key.permissions)
    return MeResponse(
        id=identity.id,
        name=identity.name,
        email=identity.email,
        role=identity.role,
        is_email_verified=identity.is_email_verified,
        auth_method=ctx.method,
        api_key=api_key,
    )


def pagination(page: Page) -> PaginationMeta:
    return PaginationMeta(total=page.total, page=page.page, limit=page.limit, pages=page.pages)
