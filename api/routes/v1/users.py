"""
api/routes/v1/users.py -- Account administration and role-gated profile views.

Routes:
  GET    /api/v1/users/profile        -- own profile (requires auth)
  GET    /api/v1/users/verified-only  -- requires auth + verified email
  GET    /api/v1/users/staff          -- requires admin or moderator
  GET    /api/v1/users                -- list accounts, typed filters (admin only)
  GET    /api/v1/users/stats          -- account counts (admin only)
  GET    /api/v1/users/{id}           -- one account (admin only)
  PATCH  /api/v1/users/{id}           -- update name/email/is_active (admin only)
  DELETE /api/v1/users/{id}           -- delete account (admin only, not self)
  POST   /api/v1/users/{id}/ban       -- ban + forced logout (admin only, not self)
  POST   /api/v1/users/{id}/unban     -- lift ban (admin only)
  PATCH  /api/v1/users/{id}/role      -- change role (admin only, not self)

The fixed paths (profile, verified-only, staff, stats) are registered before
/users/{id} so they are not captured by the integer path parameter.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AccountListQuery,
    AccountListResponse,
    AccountPatch,
    AccountResponse,
    AccountStatsResponse,
    ActivityResponse,
    BanRequest,
    MeResponse,
    MessageResponse,
    RoleChangeRequest,
)
from api.routes.v1.common import me_response, pagination
from auth.admin import AccountAdmin
from auth.dependencies import get_current_context, require_admin, require_roles, require_verified_email
from auth.models import AccountQuery, AuthContext

router = APIRouter()


def _admin(request: Request) -> AccountAdmin:
    return request.app.state.admin


# ---------------------------------------------------------------------------
# Self-service and role-gated views
# ---------------------------------------------------------------------------


@router.get("/users/profile", response_model=AccountResponse)
def profile(request: Request, ctx: AuthContext = Depends(get_current_context)) -> AccountResponse:
    return AccountResponse.from_account(_admin(request).get_account(ctx.identity.id))


@router.get("/users/profile/activity", response_model=list[ActivityResponse])
def profile_activity(request: Request, ctx: AuthContext = Depends(get_current_context)) -> list[ActivityResponse]:
    """The caller's ten most recent activity entries."""
    entries = request.app.state.activity.recent_for_account(ctx.identity.id, limit=10)
    return [ActivityResponse.from_activity(a) for a in entries]


@router.get("/users/verified-only", response_model=MeResponse)
def verified_only(ctx: AuthContext = Depends(require_verified_email)) -> MeResponse:
    return me_response(ctx)


@router.get("/users/staff", response_model=MeResponse)
def staff(ctx: AuthContext = Depends(require_roles("admin", "moderator"))) -> MeResponse:
    return me_response(ctx)


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=AccountListResponse)
def list_accounts(
    request: Request,
    query: Annotated[AccountListQuery, Query()],
    ctx: AuthContext = Depends(require_admin),
) -> AccountListResponse:
    page = _admin(request).list_accounts(
        AccountQuery(
            page=query.page,
            limit=query.limit,
            role=query.role.value if query.role else None,
            is_active=query.is_active,
            is_banned=query.is_banned,
            search=query.search,
            sort_by=query.sort_by.value,
            sort_order=query.sort_order.value,
        )
    )
    return AccountListResponse(
        items=[AccountResponse.from_account(a) for a in page.items],
        pagination=pagination(page),
    )


@router.get("/users/stats", response_model=AccountStatsResponse)
def account_stats(request: Request, ctx: AuthContext = Depends(require_admin)) -> AccountStatsResponse:
    stats = _admin(request).stats()
    return AccountStatsResponse(
        total_accounts=stats.total_accounts,
        active_accounts=stats.active_accounts,
        banned_accounts=stats.banned_accounts,
        verified_accounts=stats.verified_accounts,
        accounts_by_role=stats.accounts_by_role,
    )


@router.get("/users/{account_id}", response_model=AccountResponse)
def get_account(request: Request, account_id: int, ctx: AuthContext = Depends(require_admin)) -> AccountResponse:
    return AccountResponse.from_account(_admin(request).get_account(account_id))


@router.patch("/users/{account_id}", response_model=AccountResponse)
def update_account(
    request: Request,
    account_id: int,
    body: AccountPatch,
    ctx: AuthContext = Depends(require_admin),
) -> AccountResponse:
    updated = _admin(request).update_account(
        account_id,
        ctx.identity.id,
        name=body.name,
        email=str(body.email) if body.email is not None else None,
        is_active=body.is_active,
    )
    return AccountResponse.from_account(updated)


@router.delete("/users/{account_id}", response_model=MessageResponse)
def delete_account(request: Request, account_id: int, ctx: AuthContext = Depends(require_admin)) -> MessageResponse:
    _admin(request).delete_account(account_id, ctx.identity.id)
    return MessageResponse(message="User deleted successfully.")


@router.post("/users/{account_id}/ban", response_model=AccountResponse)
def ban_account(
    request: Request,
    account_id: int,
    body: BanRequest,
    ctx: AuthContext = Depends(require_admin),
) -> AccountResponse:
    """Ban the account. All of its sessions end immediately."""
    return AccountResponse.from_account(_admin(request).ban(account_id, body.reason, ctx.identity.id))


@router.post("/users/{account_id}/unban", response_model=AccountResponse)
def unban_account(request: Request, account_id: int, ctx: AuthContext = Depends(require_admin)) -> AccountResponse:
    return AccountResponse.from_account(_admin(request).unban(account_id, ctx.identity.id))


@router.patch("/users/{account_id}/role", response_model=AccountResponse)
def change_role(
    request: Request,
    account_id: int,
    body: RoleChangeRequest,
    ctx: AuthContext = Depends(require_admin),
) -> AccountResponse:
    return AccountResponse.from_account(_admin(request).change_role(account_id, body.role.value, ctx.identity.id))
