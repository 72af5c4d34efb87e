"""
api/routes/v1/activity.py -- Audit trail queries.

Routes:
  GET /api/v1/activity/me     -- caller's own entries, newest first (requires auth)
  GET /api/v1/activity        -- all entries with typed filters (admin only)
  GET /api/v1/activity/stats  -- counts by action + last 24h (admin only)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from api.models import ActivityListQuery, ActivityListResponse, ActivityResponse, ActivityStatsResponse
from api.routes.v1.common import pagination
from auth.activity import ActivityLog
from auth.dependencies import get_current_context, require_admin
from auth.models import ActivityQuery, AuthContext
from core.clock import to_iso

router = APIRouter()


def _log(request: Request) -> ActivityLog:
    return request.app.state.activity


def _to_response(page) -> ActivityListResponse:
    return ActivityListResponse(
        items=[ActivityResponse.from_activity(a) for a in page.items],
        pagination=pagination(page),
    )


@router.get("/activity/me", response_model=ActivityListResponse)
def my_activity(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    ctx: AuthContext = Depends(get_current_context),
) -> ActivityListResponse:
    return _to_response(_log(request).list(ActivityQuery(account_id=ctx.identity.id, page=page, limit=limit)))


@router.get("/activity/stats", response_model=ActivityStatsResponse)
def activity_stats(request: Request, ctx: AuthContext = Depends(require_admin)) -> ActivityStatsResponse:
    stats = _log(request).stats()
    return ActivityStatsResponse(by_action=stats["by_action"], last_24h=stats["last_24h"])


@router.get("/activity", response_model=ActivityListResponse)
def list_activity(
    request: Request,
    query: Annotated[ActivityListQuery, Query()],
    ctx: AuthContext = Depends(require_admin),
) -> ActivityListResponse:
    return _to_response(
        _log(request).list(
            ActivityQuery(
                account_id=query.account_id,
                action=query.action.value if query.action else None,
                start=to_iso(query.start) if query.start else None,
                end=to_iso(query.end) if query.end else None,
                page=query.page,
                limit=query.limit,
            )
        )
    )
