"""
auth/api_keys.py -- API key lifecycle: generate, create, validate, revoke, update.

Key format:
  ck_live_<48 hex chars> in production, ck_test_<48 hex chars> elsewhere.
  secrets.token_hex(24) gives 192 bits of entropy.

Storage:
  Only HMAC-SHA256(API_KEY_SECRET, key) is persisted. The digest is
  deterministic, so validation is one indexed lookup; a leaked database alone
  does not let anyone forge or recover a key. The plaintext is returned by
  create() exactly once.

Validation order (first failure wins):
  exists and active -> not expired -> owner active and not banned ->
  required permission -> IP allow-list -> domain allow-list.
  Failure reasons are specific. A caller only reaches them while holding a
  full key, so they are treated as a semi-trusted client.

Ownership:
  revoke / remove / update / get all pass account_id down to the store's WHERE
  clause. A key owned by someone else is reported exactly like a missing one.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import replace
from datetime import timedelta

from auth.models import DEFAULT_PERMISSIONS, ApiKey, ApiKeyStats, ApiKeyValidation, RateLimit
from auth.store import AccountStore
from core.clock import Clock, to_iso, utc_now
from core.config import Settings
from core.errors import NotFound, ValidationFailed

logger = logging.getLogger("credkeep.auth.api_keys")

_DISPLAY_PREFIX_LENGTH = 12


class ApiKeyManager:
    """Creates and checks API keys on behalf of their owning accounts.

    Usage:
        manager = ApiKeyManager(store, secret=settings.api_key_secret)
        record, plaintext = manager.create(account_id, "CI deploy", permissions=["read", "write"])
        result = manager.validate(plaintext, required_permission="write", client_ip="10.0.0.5")
    """

    def __init__(
        self,
        store: AccountStore,
        secret: str,
        environment: str = "development",
        max_keys_per_account: int = 10,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self._secret = secret.encode("utf-8")
        self.prefix = "ck_live" if environment == "production" else "ck_test"
        self.max_keys_per_account = max_keys_per_account
        self._clock = clock

    @classmethod
    def from_settings(cls, store: AccountStore, settings: Settings, clock: Clock = utc_now) -> "ApiKeyManager":
        return cls(
            store,
            secret=settings.api_key_secret,
            environment=settings.environment,
            max_keys_per_account=settings.max_api_keys_per_account,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Key material
    # ------------------------------------------------------------------

    def generate(self) -> str:
        return f"{self.prefix}_{secrets.token_hex(24)}"

    def digest(self, plaintext: str) -> str:
        """Return HMAC-SHA256(secret, plaintext) as hex."""
        return hmac.new(self._secret, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Create / list
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: int,
        name: str,
        permissions: list[str] | None = None,
        rate_limit: RateLimit | None = None,
        expires_in_days: int | None = None,
        allowed_ips: list[str] | None = None,
        allowed_domains: list[str] | None = None,
        description: str | None = None,
    ) -> tuple[ApiKey, str]:
        """Create a key and return (record, plaintext). The plaintext is never shown again.

        Raises ValidationFailed when the account already holds the maximum
        number of active keys.
        """
        if self.store.count_active_api_keys(account_id, self._clock()) >= self.max_keys_per_account:
            raise ValidationFailed(
                f"Maximum of {self.max_keys_per_account} active API keys per account. Revoke an existing key first.",
                code="key_limit_reached",
            )

        plaintext = self.generate()
        expires_at = None
        if expires_in_days:
            expires_at = to_iso(self._clock() + timedelta(days=expires_in_days))

        record = ApiKey(
            account_id=account_id,
            name=name,
            description=description,
            key_digest=self.digest(plaintext),
            key_prefix=plaintext[:_DISPLAY_PREFIX_LENGTH],
            permissions=list(permissions or DEFAULT_PERMISSIONS),
            rate_limit=rate_limit or RateLimit(),
            allowed_ips=list(allowed_ips or []),
            allowed_domains=list(allowed_domains or []),
            expires_at=expires_at,
        )
        key_id = self.store.create_api_key(record)
        logger.info("Created API key %s for account %s", key_id, account_id)
        return self.store.get_api_key(key_id, account_id), plaintext

    def list_for_account(self, account_id: int) -> list[ApiKey]:
        return self.store.list_api_keys(account_id)

    def get(self, key_id: int, account_id: int) -> ApiKey:
        key = self.store.get_api_key(key_id, account_id)
        if key is None:
            raise NotFound("API key not found")
        return key

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(
        self,
        plaintext: str,
        required_permission: str | None = None,
        client_ip: str | None = None,
        client_domain: str | None = None,
    ) -> ApiKeyValidation:
        """Check a presented key. On success, usage is recorded as a side effect.

        Usage counting is an atomic increment issued after the checks, so it is
        eventually consistent with the decision rather than part of it.
        """
        key = self.store.get_api_key_by_digest(self.digest(plaintext))
        if key is None:
            return ApiKeyValidation(valid=False, error="Invalid API key", reason="invalid")

        if key.expires_at and key.expires_at < to_iso(self._clock()):
            return ApiKeyValidation(valid=False, api_key=key, error="API key has expired", reason="expired")

        owner = self.store.get_by_id(key.account_id)
        if owner is None or not owner.is_active or owner.is_banned:
            return ApiKeyValidation(
                valid=False,
                api_key=key,
                error="Account associated with this API key is inactive",
                reason="owner_inactive",
            )

        if required_permission and required_permission not in key.permissions:
            return ApiKeyValidation(
                valid=False,
                api_key=key,
                error=f"API key does not have '{required_permission}' permission",
                reason="permission_denied",
            )

        if key.allowed_ips and (not client_ip or client_ip not in key.allowed_ips):
            return ApiKeyValidation(valid=False, api_key=key, error="IP address not allowed", reason="ip_not_allowed")

        if key.allowed_domains and not _domain_allowed(client_domain, key.allowed_domains):
            return ApiKeyValidation(valid=False, api_key=key, error="Domain not allowed", reason="domain_not_allowed")

        self.store.record_api_key_use(key.id)
        return ApiKeyValidation(valid=True, api_key=key, account=owner)

    # ------------------------------------------------------------------
    # Revoke / remove / update
    # ------------------------------------------------------------------

    def revoke(self, key_id: int, account_id: int) -> ApiKey:
        """Soft-disable a key. Raises NotFound if missing or owned by someone else."""
        if not self.store.deactivate_api_key(key_id, account_id):
            raise NotFound("API key not found")
        logger.info("Revoked API key %s for account %s", key_id, account_id)
        return self.store.get_api_key(key_id, account_id)

    def remove(self, key_id: int, account_id: int) -> None:
        """Hard-delete a key. Same ownership rule as revoke()."""
        if not self.store.delete_api_key(key_id, account_id):
            raise NotFound("API key not found")
        logger.info("Deleted API key %s for account %s", key_id, account_id)

    def update(
        self,
        key_id: int,
        account_id: int,
        name: str | None = None,
        description: str | None = None,
        permissions: list[str] | None = None,
        allowed_ips: list[str] | None = None,
        allowed_domains: list[str] | None = None,
        rate_limit: dict | None = None,
    ) -> ApiKey:
        """Apply the provided fields; None means "leave unchanged".

        rate_limit is a partial mapping of per_minute / per_hour / per_day and
        is merged into the stored limits field by field.
        """
        current = self.get(key_id, account_id)

        fields: dict = {}
        if name is not None:
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        if permissions is not None:
            fields["permissions"] = permissions
        if allowed_ips is not None:
            fields["allowed_ips"] = allowed_ips
        if allowed_domains is not None:
            fields["allowed_domains"] = allowed_domains
        if rate_limit:
            merged = {k: v for k, v in rate_limit.items() if v is not None}
            fields["rate_limit"] = replace(current.rate_limit, **merged)

        if fields:
            self.store.update_api_key(key_id, account_id, **fields)
        return self.get(key_id, account_id)

    def stats(self, account_id: int) -> ApiKeyStats:
        return self.store.api_key_stats(account_id)


def _domain_allowed(client_domain: str | None, allowed: list[str]) -> bool:
    """Exact match or subdomain match against each allowed domain.

    "api.example.com" matches "example.com"; "badexample.com" does not.
    """
    if not client_domain:
        return False
    host = client_domain.lower().rstrip(".")
    for domain in allowed:
        domain = domain.lower().lstrip(".").rstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False
