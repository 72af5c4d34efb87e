"""
api/routes/v1/api_keys.py -- API key management for the authenticated account.

Routes:
  POST   /api/v1/api-keys              -- create key; plaintext returned ONCE (201)
  GET    /api/v1/api-keys              -- list own keys, newest first
  GET    /api/v1/api-keys/stats        -- totals for own keys
  PATCH  /api/v1/api-keys/{id}         -- update settings (rate limit merges per field)
  POST   /api/v1/api-keys/{id}/revoke  -- soft-disable
  DELETE /api/v1/api-keys/{id}         -- hard delete

IDOR guard: every call passes ctx.identity.id down to the store, whose WHERE
clause requires both id and owner to match. Someone else's key is a 404,
indistinguishable from a key that does not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ApiKeyStatsResponse,
    ApiKeyUpdate,
    MessageResponse,
)
from auth.api_keys import ApiKeyManager
from auth.dependencies import get_current_context
from auth.models import AuthContext, RateLimit

# Auth policy: every route requires a Bearer identity. API keys cannot mint
# or manage other API keys.
router = APIRouter()


def _manager(request: Request) -> ApiKeyManager:
    return request.app.state.api_keys


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    ctx: AuthContext = Depends(get_current_context),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown ONCE and never stored."""
    rate_limit = RateLimit(**body.rate_limit.model_dump()) if body.rate_limit else None
    record, plaintext = _manager(request).create(
        ctx.identity.id,
        body.name,
        permissions=[p.value for p in body.permissions],
        rate_limit=rate_limit,
        expires_in_days=body.expires_in_days,
        allowed_ips=body.allowed_ips,
        allowed_domains=body.allowed_domains,
        description=body.description,
    )
    return ApiKeyCreatedResponse.from_api_key(record, key=plaintext)


@router.get("/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(request: Request, ctx: AuthContext = Depends(get_current_context)) -> list[ApiKeyResponse]:
    """List the caller's keys. Raw key values and digests are never returned."""
    return [ApiKeyResponse.from_api_key(k) for k in _manager(request).list_for_account(ctx.identity.id)]


@router.get("/api-keys/stats", response_model=ApiKeyStatsResponse)
def api_key_stats(request: Request, ctx: AuthContext = Depends(get_current_context)) -> ApiKeyStatsResponse:
    stats = _manager(request).stats(ctx.identity.id)
    return ApiKeyStatsResponse(
        total_keys=stats.total_keys,
        active_keys=stats.active_keys,
        total_usage=stats.total_usage,
    )


@router.patch("/api-keys/{key_id}", response_model=ApiKeyResponse)
def update_api_key(
    request: Request,
    key_id: int,
    body: ApiKeyUpdate,
    ctx: AuthContext = Depends(get_current_context),
) -> ApiKeyResponse:
    updated = _manager(request).update(
        key_id,
        ctx.identity.id,
        name=body.name,
        description=body.description,
        permissions=[p.value for p in body.permissions] if body.permissions is not None else None,
        allowed_ips=body.allowed_ips,
        allowed_domains=body.allowed_domains,
        rate_limit=body.rate_limit.model_dump(exclude_none=True) if body.rate_limit else None,
    )
    return ApiKeyResponse.from_api_key(updated)


@router.post("/api-keys/{key_id}/revoke", response_model=ApiKeyResponse)
def revoke_api_key(request: Request, key_id: int, ctx: AuthContext = Depends(get_current_context)) -> ApiKeyResponse:
    """Soft-disable a key. It stays listed but no longer authenticates."""
    return ApiKeyResponse.from_api_key(_manager(request).revoke(key_id, ctx.identity.id))


@router.delete("/api-keys/{key_id}", response_model=MessageResponse)
def delete_api_key(request: Request, key_id: int, ctx: AuthContext = Depends(get_current_context)) -> MessageResponse:
    _manager(request).remove(key_id, ctx.identity.id)
    return MessageResponse(message="API key deleted successfully.")
