"""
api/routes/v1/data.py -- Endpoints that accept either credential type.

Routes:
  GET  /api/v1/data         -- Bearer, or X-API-Key with "read"
  POST /api/v1/data         -- Bearer, or X-API-Key with "write"
  GET  /api/v1/data/public  -- anyone; response reflects the caller if a valid Bearer token is sent

Permissions only constrain API keys. A Bearer token acts with the account's
full authority.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import DataCreate, DataResponse
from auth.dependencies import flexible_auth, get_optional_context
from auth.models import AuthContext

router = APIRouter()


@router.get("/data", response_model=DataResponse)
def read_data(ctx: AuthContext = Depends(flexible_auth("read"))) -> DataResponse:
    return DataResponse(
        message="Data retrieved successfully.",
        auth_method=ctx.method,
        account_id=ctx.identity.id,
        data={"items": []},
    )


@router.post("/data", response_model=DataResponse, status_code=201)
def create_data(body: DataCreate, ctx: AuthContext = Depends(flexible_auth("write"))) -> DataResponse:
    return DataResponse(
        message="Data created successfully.",
        auth_method=ctx.method,
        account_id=ctx.identity.id,
        data=body.payload,
    )


@router.get("/data/public", response_model=DataResponse)
def public_data(ctx: AuthContext | None = Depends(get_optional_context)) -> DataResponse:
    if ctx is None:
        return DataResponse(message="Hello, guest.")
    return DataResponse(
        message=f"Hello, {ctx.identity.name}.",
        auth_method=ctx.method,
        account_id=ctx.identity.id,
    )
