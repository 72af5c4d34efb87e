"""
tests/test_store.py -- Unit tests for auth/store.AccountStore.

Covers:
  - account CRUD, case-insensitive email, secret-column exclusion
  - update_account field whitelist
  - session add / rotate / remove / clear / purge semantics
  - reset_password and ban_account drop sessions in the same call
  - listing filters, search, sort, pagination, and stats
  - API key persistence and ownership-scoped queries
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountQuery, ApiKey, RateLimit, Session
from auth.store import AccountStore
from core.clock import to_iso


def _account(email: str, name: str = "Ann", role: str = "user") -> Account:
    return Account(name=name, email=email, role=role, password_digest="$2b$04$fakedigest")


def _session(store: AccountStore, clock, account_id: int, token: str, days: int = 30) -> Session:
    return Session(
        account_id=account_id,
        token=token,
        created_at=to_iso(clock()),
        expires_at=to_iso(clock() + timedelta(days=days)),
    )


class TestAccounts:
    def test_create_and_fetch(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("Ann@Example.com"))
        account = store.get_by_email("ANN@example.COM")
        assert account is not None
        assert account.id == account_id
        assert account.email == "ann@example.com"
        assert account.role == "user"
        assert account.is_active and not account.is_banned and not account.is_email_verified
        assert account.created_at is not None

    def test_secret_columns_excluded_by_default(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        assert store.get_by_id(account_id).password_digest is None
        assert store.get_by_id(account_id, include_secrets=True).password_digest == "$2b$04$fakedigest"

    def test_duplicate_email_raises_integrity_error(self, store: AccountStore) -> None:
        store.create_account(_account("ann@example.com"))
        with pytest.raises(IntegrityError):
            store.create_account(_account("ANN@example.com"))

    def test_missing_account(self, store: AccountStore) -> None:
        assert store.get_by_id(999) is None
        assert store.get_by_email("nobody@example.com") is None

    def test_update_account_whitelist(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        assert store.update_account(account_id, name="Annie", is_active=False)
        account = store.get_by_id(account_id)
        assert account.name == "Annie"
        assert account.is_active is False
        with pytest.raises(ValueError, match="Unknown account fields"):
            store.update_account(account_id, password_digest="x")
        with pytest.raises(ValueError, match="Unknown role"):
            store.update_account(account_id, role="superuser")
        assert store.update_account(999, name="Ghost") is False

    def test_delete_account_removes_sessions_and_keys(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "t1"))
        store.create_api_key(ApiKey(account_id=account_id, name="k", key_digest="d" * 64, key_prefix="ck_test_abcd"))
        assert store.delete_account(account_id)
        assert store.get_by_id(account_id) is None
        assert store.list_sessions(account_id) == []
        assert store.list_api_keys(account_id) == []
        assert store.delete_account(account_id) is False


class TestSessions:
    def test_add_and_list(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "t1"))
        assert [s.token for s in store.list_sessions(account_id)] == ["t1"]
        assert store.list_sessions(account_id + 1) == []

    def test_expired_session_cannot_rotate(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "t1", days=1))
        later = clock() + timedelta(days=2)
        assert store.rotate_session(account_id, "t1", _session(store, clock, account_id, "t2"), later) is False
        assert [s.token for s in store.list_sessions(account_id)] == ["t1"]

    def test_record_login_stamps_last_login(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.record_login(_session(store, clock, account_id, "t1"))
        assert store.get_by_id(account_id).last_login == to_iso(clock())
        assert len(store.list_sessions(account_id)) == 1

    def test_rotate_replaces_exactly_one_session(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "old"))
        store.add_session(_session(store, clock, account_id, "other-device"))

        assert store.rotate_session(account_id, "old", _session(store, clock, account_id, "new"), clock())
        tokens = {s.token for s in store.list_sessions(account_id)}
        assert tokens == {"other-device", "new"}

    def test_rotate_twice_fails_second_time(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "old"))
        assert store.rotate_session(account_id, "old", _session(store, clock, account_id, "new1"), clock())
        assert not store.rotate_session(account_id, "old", _session(store, clock, account_id, "new2"), clock())
        assert [s.token for s in store.list_sessions(account_id)] == ["new1"]

    def test_rotate_expired_session_inserts_nothing(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "old", days=1))
        later = clock() + timedelta(days=2)
        assert not store.rotate_session(account_id, "old", _session(store, clock, account_id, "new"), later)
        assert [s.token for s in store.list_sessions(account_id)] == ["old"]

    def test_remove_and_clear(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        for token in ("a", "b", "c"):
            store.add_session(_session(store, clock, account_id, token))
        assert store.remove_session(account_id, "a")
        assert not store.remove_session(account_id, "a")
        assert store.clear_sessions(account_id) == 2
        assert store.list_sessions(account_id) == []

    def test_purge_expired(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "short", days=1))
        store.add_session(_session(store, clock, account_id, "long", days=30))
        assert store.purge_expired_sessions(clock() + timedelta(days=2)) == 1
        assert [s.token for s in store.list_sessions(account_id)] == ["long"]


class TestResetAndBan:
    def test_reset_password_clears_token_and_sessions(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "t1"))
        store.set_reset_token(account_id, "r" * 64, clock() + timedelta(hours=1))
        assert store.find_by_reset_digest("r" * 64, clock()).id == account_id

        store.reset_password(account_id, "$2b$04$newdigest")
        account = store.get_by_id(account_id, include_secrets=True)
        assert account.password_digest == "$2b$04$newdigest"
        assert account.reset_token_digest is None
        assert store.list_sessions(account_id) == []
        assert store.find_by_reset_digest("r" * 64, clock()) is None

    def test_expired_reset_digest_not_found(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.set_reset_token(account_id, "r" * 64, clock() + timedelta(hours=1))
        assert store.find_by_reset_digest("r" * 64, clock() + timedelta(hours=2)) is None

    def test_verification_digest_flow(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        store.set_verification_token(account_id, "v" * 64, clock() + timedelta(hours=1))
        assert store.find_by_verification_digest("v" * 64, clock()).id == account_id
        store.mark_email_verified(account_id)
        assert store.get_by_id(account_id).is_email_verified
        assert store.find_by_verification_digest("v" * 64, clock()) is None

    def test_ban_clears_sessions_and_unban_restores(self, store: AccountStore, clock) -> None:
        admin_id = store.create_account(_account("admin@example.com", role="admin"))
        account_id = store.create_account(_account("ann@example.com"))
        store.add_session(_session(store, clock, account_id, "t1"))

        store.ban_account(account_id, "spam", admin_id)
        banned = store.get_by_id(account_id)
        assert banned.is_banned and banned.ban_reason == "spam" and banned.banned_by == admin_id
        assert store.list_sessions(account_id) == []

        store.unban_account(account_id)
        restored = store.get_by_id(account_id)
        assert not restored.is_banned
        assert restored.ban_reason is None and restored.banned_by is None


class TestListing:
    @pytest.fixture
    def populated(self, store: AccountStore, clock) -> AccountStore:
        for i, (name, role) in enumerate(
            [("Alice", "admin"), ("Bob", "user"), ("Carol", "moderator"), ("Dave", "user"), ("Eve_x", "user")]
        ):
            clock.advance(minutes=1)
            store.create_account(_account(f"{name.lower()}@example.com", name=name, role=role))
        return store

    def test_default_sort_newest_first(self, populated: AccountStore) -> None:
        page = populated.list_accounts(AccountQuery())
        assert [a.name for a in page.items] == ["Eve_x", "Dave", "Carol", "Bob", "Alice"]
        assert page.total == 5

    def test_role_filter_and_pagination(self, populated: AccountStore) -> None:
        page = populated.list_accounts(AccountQuery(role="user", limit=2, page=2, sort_by="name", sort_order="asc"))
        assert page.total == 3
        assert page.pages == 2
        assert [a.name for a in page.items] == ["Eve_x"]

    def test_search_is_case_insensitive_and_literal(self, populated: AccountStore) -> None:
        assert [a.name for a in populated.list_accounts(AccountQuery(search="CAROL")).items] == ["Carol"]
        # "_" is a LIKE wildcard; it must match literally.
        assert [a.name for a in populated.list_accounts(AccountQuery(search="e_x")).items] == ["Eve_x"]

    def test_listing_excludes_secrets(self, populated: AccountStore) -> None:
        assert all(a.password_digest is None for a in populated.list_accounts(AccountQuery()).items)

    def test_stats(self, populated: AccountStore) -> None:
        bob = populated.get_by_email("bob@example.com")
        populated.ban_account(bob.id, "spam", 1)
        populated.mark_email_verified(1)
        stats = populated.account_stats()
        assert stats.total_accounts == 5
        assert stats.active_accounts == 4
        assert stats.banned_accounts == 1
        assert stats.verified_accounts == 1
        assert stats.accounts_by_role == {"user": 3, "moderator": 1, "admin": 1}


class TestApiKeys:
    def _key(self, account_id: int, digest: str = "d" * 64) -> ApiKey:
        return ApiKey(
            account_id=account_id,
            name="CI",
            key_digest=digest,
            key_prefix="ck_test_abcd",
            permissions=["read", "write"],
            rate_limit=RateLimit(per_minute=5),
            allowed_ips=["10.0.0.1"],
        )

    def test_round_trip(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        key_id = store.create_api_key(self._key(account_id))
        key = store.get_api_key(key_id, account_id)
        assert key.permissions == ["read", "write"]
        assert key.rate_limit == RateLimit(per_minute=5, per_hour=1000, per_day=10000)
        assert key.allowed_ips == ["10.0.0.1"]
        assert key.allowed_domains == []
        assert key.usage_count == 0 and key.is_active

    def test_ownership_scoping(self, store: AccountStore) -> None:
        owner = store.create_account(_account("ann@example.com"))
        other = store.create_account(_account("bob@example.com"))
        key_id = store.create_api_key(self._key(owner))
        assert store.get_api_key(key_id, other) is None
        assert not store.deactivate_api_key(key_id, other)
        assert not store.delete_api_key(key_id, other)
        assert not store.update_api_key(key_id, other, name="stolen")

    def test_digest_lookup_only_active(self, store: AccountStore, clock) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        key_id = store.create_api_key(self._key(account_id))
        assert store.get_api_key_by_digest("d" * 64).id == key_id
        store.deactivate_api_key(key_id, account_id)
        assert store.get_api_key_by_digest("d" * 64) is None
        assert store.count_active_api_keys(account_id, clock()) == 0

    def test_usage_and_stats(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        k1 = store.create_api_key(self._key(account_id, "1" * 64))
        store.create_api_key(self._key(account_id, "2" * 64))
        store.record_api_key_use(k1)
        store.record_api_key_use(k1)
        store.deactivate_api_key(k1, account_id)
        key = store.get_api_key(k1, account_id)
        assert key.usage_count == 2 and key.last_used_at is not None
        stats = store.api_key_stats(account_id)
        assert (stats.total_keys, stats.active_keys, stats.total_usage) == (2, 1, 2)

    def test_update_rejects_unknown_fields(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        key_id = store.create_api_key(self._key(account_id))
        with pytest.raises(ValueError):
            store.update_api_key(key_id, account_id, key_digest="e" * 64)

    def test_stats_for_account_without_keys(self, store: AccountStore) -> None:
        account_id = store.create_account(_account("ann@example.com"))
        stats = store.api_key_stats(account_id)
        assert (stats.total_keys, stats.active_keys, stats.total_usage) == (0, 0, 0)

    def test_ping(self, store: AccountStore) -> None:
        assert store.ping() is True
