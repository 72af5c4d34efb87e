"""
auth/models.py -- Domain dataclasses for accounts, sessions, and API keys.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Timestamps are ISO 8601 UTC strings with microsecond precision, the same
representation the store persists, so string comparison orders correctly.

Layer rule: no imports from api/, notify/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLES: tuple[str, ...] = ("user", "moderator", "admin")
PERMISSIONS: tuple[str, ...] = ("read", "write", "delete", "admin")

DEFAULT_PERMISSIONS: tuple[str, ...] = ("read",)


@dataclass
class Session:
    """One device's refresh-token record.

    token is the refresh JWT string itself and is the lookup key. A session is
    valid only while its row exists AND expires_at is in the future -- a JWT
    that still verifies cryptographically is not enough.
    """

    account_id: int
    token: str
    created_at: str
    expires_at: str
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None


@dataclass
class Account:
    """A registered identity.

    The digest fields are None unless the store was asked for them explicitly
    (include_secrets=True). Plaintext secrets never appear here.
    """

    name: str
    email: str  # always stored lowercased
    role: str = "user"
    id: int | None = None
    password_digest: str | None = None
    is_email_verified: bool = False
    is_active: bool = True
    is_banned: bool = False
    ban_reason: str | None = None
    banned_by: int | None = None
    banned_at: str | None = None
    verification_token_digest: str | None = None
    verification_token_expires_at: str | None = None
    reset_token_digest: str | None = None
    reset_token_expires_at: str | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RateLimit:
    """Per-key request budget. Stored with the key; enforced by the limiter."""

    per_minute: int = 60
    per_hour: int = 1000
    per_day: int = 10000


@dataclass
class ApiKey:
    """A long-lived credential for non-browser clients.

    key_digest is HMAC-SHA256 of the plaintext key. The plaintext is returned
    once at creation and is unrecoverable afterwards. key_prefix (the
    environment prefix plus a few random chars) is kept for display only.
    """

    account_id: int
    name: str
    key_digest: str
    key_prefix: str
    permissions: list[str] = field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    description: str | None = None
    rate_limit: RateLimit = field(default_factory=RateLimit)
    allowed_ips: list[str] = field(default_factory=list)
    allowed_domains: list[str] = field(default_factory=list)
    usage_count: int = 0
    last_used_at: str | None = None
    expires_at: str | None = None
    is_active: bool = True
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class TokenPayload:
    """Claims carried by both access and refresh JWTs. Never persisted."""

    account_id: int
    email: str
    role: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


@dataclass
class Identity:
    """Request-scoped identity context produced by the access gate."""

    id: int
    name: str
    email: str
    role: str
    is_email_verified: bool


@dataclass
class ApiKeyContext:
    """The API key that authenticated the request, when there was one."""

    id: int
    name: str
    permissions: list[str]


@dataclass
class AuthContext:
    """What a handler receives after authentication.

    Passed explicitly through the dependency chain instead of being stored on
    the request object.
    """

    identity: Identity
    api_key: ApiKeyContext | None = None

    @property
    def method(self) -> str:
        return "api_key" if self.api_key is not None else "bearer"


@dataclass
class AuthResult:
    """Returned by register and login."""

    account: Account
    tokens: TokenPair


@dataclass
class ApiKeyValidation:
    """Outcome of ApiKeyManager.validate(). error and reason are set iff valid is False.

    reason is a stable machine code: invalid, expired, owner_inactive,
    permission_denied, ip_not_allowed, domain_not_allowed.
    """

    valid: bool
    api_key: ApiKey | None = None
    account: Account | None = None
    error: str | None = None
    reason: str | None = None


@dataclass
class ApiKeyStats:
    total_keys: int = 0
    active_keys: int = 0
    total_usage: int = 0


@dataclass
class Page:
    """One page of a listing plus pagination metadata."""

    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


@dataclass
class AccountQuery:
    """Filters for the admin account listing. Validated by the API layer."""

    page: int = 1
    limit: int = 10
    role: str | None = None
    is_active: bool | None = None
    is_banned: bool | None = None
    search: str | None = None
    sort_by: str = "created_at"  # created_at | name | email | last_login
    sort_order: str = "desc"  # asc | desc


@dataclass
class AccountStats:
    total_accounts: int = 0
    active_accounts: int = 0
    banned_accounts: int = 0
    verified_accounts: int = 0
    accounts_by_role: dict[str, int] = field(default_factory=lambda: {r: 0 for r in ROLES})


ACTIVITY_ACTIONS: tuple[str, ...] = (
    "login",
    "logout",
    "register",
    "password_reset",
    "email_verified",
    "profile_updated",
    "user_banned",
    "user_unbanned",
    "role_changed",
)


@dataclass
class Activity:
    """One audit-trail entry."""

    account_id: int
    action: str
    target_account_id: int | None = None
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class ActivityQuery:
    account_id: int | None = None
    action: str | None = None
    start: str | None = None  # ISO 8601, inclusive
    end: str | None = None  # ISO 8601, inclusive
    page: int = 1
    limit: int = 50
