"""
API request and response models for CredKeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

All input validation lives here, at the boundary: password policy, permission
subsets, IP syntax, rate-limit bounds, listing filters. The auth core receives
values that are already well-formed.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import ipaddress
import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from auth.models import Account, Activity, ApiKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PASSWORD_MIN = 6
_PASSWORD_MAX_BYTES = 72  # bcrypt input limit
_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$")


def check_password_policy(value: str) -> str:
    if len(value) < _PASSWORD_MIN:
        raise ValueError(f"Password must be at least {_PASSWORD_MIN} characters")
    if len(value.encode("utf-8")) > _PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {_PASSWORD_MAX_BYTES} bytes")
    if not _PASSWORD_RULE.match(value):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


class PermissionEnum(str, Enum):
    read = "read"
    write = "write"
    delete = "delete"
    admin = "admin"


class AccountSortEnum(str, Enum):
    created_at = "created_at"
    name = "name"
    email = "email"
    last_login = "last_login"


class SortOrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


class ActivityActionEnum(str, Enum):
    login = "login"
    logout = "logout"
    register = "register"
    password_reset = "password_reset"
    email_verified = "email_verified"
    profile_updated = "profile_updated"
    user_banned = "user_banned"
    user_unbanned = "user_unbanned"
    role_changed = "role_changed"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Only name is trimmed. Passwords are hashed exactly as submitted so login
    with the same string always matches.
    """

    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str
    confirm_password: str

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No password policy here: a login attempt with a short password is just a
    wrong password, and must fail the same way.
    """

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Digests and token fields never appear."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    is_email_verified: bool
    is_active: bool
    is_banned: bool
    ban_reason: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            role=account.role,
            is_email_verified=account.is_email_verified,
            is_active=account.is_active,
            is_banned=account.is_banned,
            ban_reason=account.ban_reason,
            last_login=account.last_login,
            created_at=account.created_at,
        )


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthResponse(BaseModel):
    """Response for register and login."""

    account: AccountResponse
    tokens: TokenPairResponse


class MessageResponse(BaseModel):
    message: str


class ApiKeyContextResponse(BaseModel):
    id: int
    name: str
    permissions: list[str]


class MeResponse(BaseModel):
    """Identity attached to the current request."""

    id: int
    name: str
    email: str
    role: str
    is_email_verified: bool
    auth_method: str
    api_key: Optional[ApiKeyContextResponse] = None


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class RateLimitModel(BaseModel):
    per_minute: int = Field(default=60, ge=1, le=1000)
    per_hour: int = Field(default=1000, ge=1, le=100000)
    per_day: int = Field(default=10000, ge=1, le=1000000)


class RateLimitPatch(BaseModel):
    """Partial rate-limit update. Omitted fields keep their stored value."""

    per_minute: Optional[int] = Field(default=None, ge=1, le=1000)
    per_hour: Optional[int] = Field(default=None, ge=1, le=100000)
    per_day: Optional[int] = Field(default=None, ge=1, le=1000000)


def _check_ips(values: Optional[list[str]]) -> Optional[list[str]]:
    if values is None:
        return None
    normalized = []
    for value in values:
        try:
            normalized.append(str(ipaddress.ip_address(value.strip())))
        except ValueError as exc:
            raise ValueError(f"Invalid IP address: {value!r}") from exc
    return normalized


def _check_domains(values: Optional[list[str]]) -> Optional[list[str]]:
    if values is None:
        return None
    normalized = []
    for value in values:
        domain = value.strip().lower().rstrip(".")
        if not _DOMAIN_RE.match(domain):
            raise ValueError(f"Invalid domain: {value!r}")
        normalized.append(domain)
    return normalized


class ApiKeyCreate(BaseModel):
    """Request body for POST /api/v1/api-keys."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    permissions: list[PermissionEnum] = Field(default_factory=lambda: [PermissionEnum.read], min_length=1)
    rate_limit: Optional[RateLimitModel] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)
    allowed_ips: list[str] = Field(default_factory=list, max_length=50)
    allowed_domains: list[str] = Field(default_factory=list, max_length=50)

    @field_validator("allowed_ips")
    @classmethod
    def validate_ips(cls, values):
        return _check_ips(values)

    @field_validator("allowed_domains")
    @classmethod
    def validate_domains(cls, values):
        return _check_domains(values)


class ApiKeyUpdate(BaseModel):
    """Request body for PATCH /api/v1/api-keys/{id}. Omitted fields are unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    permissions: Optional[list[PermissionEnum]] = Field(default=None, min_length=1)
    rate_limit: Optional[RateLimitPatch] = None
    allowed_ips: Optional[list[str]] = Field(default=None, max_length=50)
    allowed_domains: Optional[list[str]] = Field(default=None, max_length=50)

    @field_validator("allowed_ips")
    @classmethod
    def validate_ips(cls, values):
        return _check_ips(values)

    @field_validator("allowed_domains")
    @classmethod
    def validate_domains(cls, values):
        return _check_domains(values)


class ApiKeyResponse(BaseModel):
    """An API key as shown to its owner. The digest is never included."""

    id: int
    name: str
    description: Optional[str] = None
    key_prefix: str
    permissions: list[str]
    rate_limit: RateLimitModel
    allowed_ips: list[str]
    allowed_domains: list[str]
    usage_count: int
    last_used_at: Optional[str] = None
    expires_at: Optional[str] = None
    is_active: bool
    created_at: Optional[str] = None

    @classmethod
    def from_api_key(cls, key: ApiKey, /, **extra) -> "ApiKeyResponse":
        return cls(
            id=key.id,
            name=key.name,
            description=key.description,
            key_prefix=key.key_prefix,
            permissions=list(key.permissions),
            rate_limit=RateLimitModel(
                per_minute=key.rate_limit.per_minute,
                per_hour=key.rate_limit.per_hour,
                per_day=key.rate_limit.per_day,
            ),
            allowed_ips=list(key.allowed_ips),
            allowed_domains=list(key.allowed_domains),
            usage_count=key.usage_count,
            last_used_at=key.last_used_at,
            expires_at=key.expires_at,
            is_active=key.is_active,
            created_at=key.created_at,
            **extra,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Creation response. key is the plaintext and is shown exactly once."""

    key: str
    warning: str = "Store this key securely. It will not be shown again."


class ApiKeyStatsResponse(BaseModel):
    total_keys: int
    active_keys: int
    total_usage: int


# ---------------------------------------------------------------------------
# Account administration
# ---------------------------------------------------------------------------


class AccountListQuery(BaseModel):
    """Query parameters for GET /api/v1/users."""

    model_config = ConfigDict(extra="forbid")

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None
    is_banned: Optional[bool] = None
    search: Optional[str] = Field(default=None, max_length=100)
    sort_by: AccountSortEnum = AccountSortEnum.created_at
    sort_order: SortOrderEnum = SortOrderEnum.desc


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None


class BanRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RoleChangeRequest(BaseModel):
    role: RoleEnum


class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class AccountListResponse(BaseModel):
    items: list[AccountResponse]
    pagination: PaginationMeta


class AccountStatsResponse(BaseModel):
    total_accounts: int
    active_accounts: int
    banned_accounts: int
    verified_accounts: int
    accounts_by_role: dict[str, int]


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class ActivityListQuery(BaseModel):
    """Query parameters for GET /api/v1/activity."""

    model_config = ConfigDict(extra="forbid")

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)
    account_id: Optional[int] = Field(default=None, ge=1)
    action: Optional[ActivityActionEnum] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class ActivityResponse(BaseModel):
    id: int
    account_id: int
    action: str
    target_account_id: Optional[int] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str

    @classmethod
    def from_activity(cls, activity: Activity) -> "ActivityResponse":
        return cls(
            id=activity.id,
            account_id=activity.account_id,
            action=activity.action,
            target_account_id=activity.target_account_id,
            details=activity.details,
            ip_address=activity.ip_address,
            user_agent=activity.user_agent,
            created_at=activity.created_at,
        )


class ActivityListResponse(BaseModel):
    items: list[ActivityResponse]
    pagination: PaginationMeta


class ActivityStatsResponse(BaseModel):
    by_action: dict[str, int]
    last_24h: int


# ---------------------------------------------------------------------------
# Data (flexible-auth endpoints)
# ---------------------------------------------------------------------------


class DataCreate(BaseModel):
    payload: dict = Field(default_factory=dict)


class DataResponse(BaseModel):
    message: str
    auth_method: Optional[str] = None
    account_id: Optional[int] = None
    data: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
