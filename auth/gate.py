"""
auth/gate.py -- Request-time authentication and authorization checks.

Framework-agnostic: every method takes raw header values and returns an
AuthContext or raises an AppError. auth/dependencies.py adapts these to
FastAPI Depends(); nothing here touches a request object.

Two paths:
  Bearer   Authorization: Bearer <access JWT>. The account is re-read from
           the store on every request, so a ban, deactivation, deletion, or
           role change takes effect immediately even while the JWT is valid.
  API key  X-API-Key: <key>. Delegated to ApiKeyManager.validate().

flexible() picks Bearer when an Authorization: Bearer header is present,
otherwise X-API-Key, otherwise fails. optional() is the Bearer path with
every failure turned into "no identity".

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging

from auth.api_keys import ApiKeyManager
from auth.models import Account, ApiKeyContext, AuthContext, Identity
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.errors import (
    AccountBanned,
    AccountDeactivated,
    AccountGone,
    AppError,
    Forbidden,
    Unauthenticated,
)

logger = logging.getLogger("credkeep.auth.gate")

_BEARER_PREFIX = "Bearer "


class AccessGate:
    """Turns presented credentials into an AuthContext.

    Usage:
        gate = AccessGate(store, codec, api_keys)
        ctx = gate.flexible(authorization=headers.get("Authorization"), api_key=headers.get("X-API-Key"))
        require_role(ctx, "admin")
    """

    def __init__(self, store: AccountStore, codec: TokenCodec, api_keys: ApiKeyManager) -> None:
        self.store = store
        self.codec = codec
        self.api_keys = api_keys

    def bearer(self, authorization: str | None) -> AuthContext:
        """Authenticate an Authorization header value.

        Raises Unauthenticated (missing or malformed header), TokenExpired,
        TokenInvalid, AccountGone, AccountDeactivated, or AccountBanned.
        """
        token = _extract_bearer(authorization)
        claims = self.codec.verify_access_token(token)
        account = self.store.get_by_id(claims.account_id)
        if account is None:
            raise AccountGone("User no longer exists")
        if not account.is_active:
            raise AccountDeactivated()
        if account.is_banned:
            raise AccountBanned(account.ban_reason)
        return AuthContext(identity=identity_for(account))

    def api_key(
        self,
        api_key: str | None,
        required_permission: str | None = None,
        client_ip: str | None = None,
        client_domain: str | None = None,
    ) -> AuthContext:
        """Authenticate an X-API-Key header value.

        A key that lacks required_permission is Forbidden; every other
        validation failure is Unauthenticated with the specific reason.
        """
        if not api_key:
            raise Unauthenticated("API key is required. Please provide X-API-Key header", code="api_key_required")

        result = self.api_keys.validate(api_key, required_permission, client_ip, client_domain)
        if not result.valid:
            if result.reason == "permission_denied":
                raise Forbidden(result.error, code="permission_denied")
            raise Unauthenticated(result.error or "Invalid API key", code="invalid_api_key")

        key = result.api_key
        return AuthContext(
            identity=identity_for(result.account),
            api_key=ApiKeyContext(id=key.id, name=key.name, permissions=list(key.permissions)),
        )

    def flexible(
        self,
        authorization: str | None,
        api_key: str | None,
        required_permission: str | None = None,
        client_ip: str | None = None,
        client_domain: str | None = None,
    ) -> AuthContext:
        """Bearer if present, else API key, else Unauthenticated.

        required_permission only applies to the API-key path. A bearer token
        carries the account's full authority.
        """
        if authorization and authorization.startswith(_BEARER_PREFIX):
            return self.bearer(authorization)
        if api_key:
            return self.api_key(api_key, required_permission, client_ip, client_domain)
        raise Unauthenticated(
            "Authentication required. Provide either Bearer token or X-API-Key header",
            code="unauthenticated",
        )

    def optional(self, authorization: str | None) -> AuthContext | None:
        """Bearer path that never raises. Any failure yields None."""
        if not authorization or not authorization.startswith(_BEARER_PREFIX):
            return None
        try:
            return self.bearer(authorization)
        except AppError as exc:
            logger.debug("Optional auth ignored credential: %s", exc.code)
            return None


# ---------------------------------------------------------------------------
# Post-authentication checks
# ---------------------------------------------------------------------------


def require_role(ctx: AuthContext, *roles: str) -> AuthContext:
    """Raise Forbidden unless the identity's role is one of roles."""
    if ctx.identity.role not in roles:
        raise Forbidden(
            f"Access denied. Required role: {' or '.join(roles)}. Your role: {ctx.identity.role}",
            code="insufficient_role",
        )
    return ctx


def require_verified(ctx: AuthContext) -> AuthContext:
    if not ctx.identity.is_email_verified:
        raise Forbidden("Please verify your email address to access this feature.", code="email_not_verified")
    return ctx


def guard_self_action(
    target_id: int,
    actor_id: int,
    message: str = "You cannot perform this action on yourself",
) -> None:
    """Raise Forbidden if an admin action targets the acting account."""
    if target_id == actor_id:
        raise Forbidden(message, code="self_action_forbidden")


def identity_for(account: Account) -> Identity:
    return Identity(
        id=account.id,
        name=account.name,
        email=account.email,
        role=account.role,
        is_email_verified=account.is_email_verified,
    )


def _extract_bearer(authorization: str | None) -> str:
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        raise Unauthenticated("No authentication token provided. Please login.", code="missing_token")
    token = authorization[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise Unauthenticated("Invalid token format", code="missing_token")
    return token
