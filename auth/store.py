"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts, sessions, and API keys.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_session / _row_to_api_key are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Secret columns (password digest, verification and reset digests) are left
  out of the default account SELECT. Callers that need them must pass
  include_secrets=True, which keeps digests out of every code path that only
  wants to display or authorize an account.

Atomicity:
  Each session is its own row, so adding or removing one device's session is
  a single INSERT or DELETE. Concurrent logins from different devices never
  overwrite each other.

  rotate_session() deletes the presented session and inserts its replacement
  inside ONE transaction. The DELETE is conditional on the row still existing
  and being unexpired; if it matched nothing, nothing is inserted. Two
  concurrent refreshes with the same token therefore cannot both succeed, and
  a crash between the two statements cannot orphan the account's session.

  reset_password() and ban_account() change the account and drop all of its
  sessions in the same transaction.

  record_api_key_use() is an atomic "usage_count = usage_count + 1".

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import (
    ROLES,
    Account,
    AccountQuery,
    AccountStats,
    ApiKey,
    ApiKeyStats,
    Page,
    RateLimit,
    Session,
)
from core.clock import Clock, to_iso, utc_now

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'credkeep.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # lowercased on write
    Column("password_digest", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_banned", Integer, nullable=False, server_default="0"),
    Column("ban_reason", Text),
    Column("banned_by", Integer),
    Column("banned_at", String(32)),
    Column("verification_token_digest", String(64), index=True),
    Column("verification_token_expires_at", String(32)),
    Column("reset_token_digest", String(64), index=True),
    Column("reset_token_expires_at", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),  # the refresh JWT itself
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
)

_api_keys = Table(
    "api_keys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("description", String(500)),
    Column("key_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("key_prefix", String(20), nullable=False),  # display only
    Column("permissions", Text, nullable=False),  # JSON list
    Column("rate_limit_per_minute", Integer, nullable=False, server_default="60"),
    Column("rate_limit_per_hour", Integer, nullable=False, server_default="1000"),
    Column("rate_limit_per_day", Integer, nullable=False, server_default="10000"),
    Column("allowed_ips", Text, nullable=False, server_default="[]"),  # JSON list
    Column("allowed_domains", Text, nullable=False, server_default="[]"),  # JSON list
    Column("usage_count", Integer, nullable=False, server_default="0"),
    Column("last_used_at", String(32)),
    Column("expires_at", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_SECRET_COLUMNS = frozenset(
    {
        "password_digest",
        "verification_token_digest",
        "verification_token_expires_at",
        "reset_token_digest",
        "reset_token_expires_at",
    }
)
_PUBLIC_ACCOUNT_COLUMNS = [c for c in _accounts.c if c.name not in _SECRET_COLUMNS]

# Fields update_account() accepts. Everything else goes through a dedicated
# method so the invariant it protects stays in one place.
_UPDATABLE_ACCOUNT_FIELDS = frozenset({"name", "email", "role", "is_active", "is_email_verified"})
_UPDATABLE_API_KEY_FIELDS = frozenset(
    {"name", "description", "permissions", "allowed_ips", "allowed_domains", "rate_limit"}
)

_SORT_COLUMNS = {
    "created_at": _accounts.c.created_at,
    "name": _accounts.c.name,
    "email": _accounts.c.email,
    "last_login": _accounts.c.last_login,
}

_BOOL_COLUMNS = ("is_active", "is_email_verified", "is_banned")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Session, and ApiKey entities.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create_account(Account(name="Ann", email="ann@x.com", password_digest=digest))
        account = store.get_by_email("ann@x.com", include_secrets=True)
        store.close()
    """

    def __init__(self, db_url: str = "", clock: Clock = utc_now) -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a Conflict: it means a concurrent request
        registered the same email between their existence check and this insert.
        """
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    name=account.name,
                    email=account.email.lower(),
                    password_digest=account.password_digest,
                    role=account.role,
                    is_email_verified=1 if account.is_email_verified else 0,
                    is_active=1 if account.is_active else 0,
                    is_banned=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_secrets: bool = False) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select_accounts(include_secrets).where(_accounts.c.email == email.strip().lower())
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int, include_secrets: bool = False) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select_accounts(include_secrets).where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable profile fields on an existing account.

        Accepted fields: name, email, role, is_active, is_email_verified.
        Unknown fields raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if "role" in fields and fields["role"] not in ROLES:
            raise ValueError(f"Unknown role: {fields['role']!r}")
        values = dict(fields)
        for name in _BOOL_COLUMNS:
            if name in values:
                values[name] = 1 if values[name] else 0
        if "email" in values:
            values["email"] = values["email"].strip().lower()
        values["updated_at"] = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_account(self, account_id: int) -> bool:
        """Permanently delete an account with its sessions and API keys."""
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))
            conn.execute(_api_keys.delete().where(_api_keys.c.account_id == account_id))
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
        return result.rowcount > 0

    def list_accounts(self, query: AccountQuery) -> Page:
        """Return one page of accounts matching the query, secrets excluded."""
        conditions = []
        if query.role:
            conditions.append(_accounts.c.role == query.role)
        if query.is_active is not None:
            conditions.append(_accounts.c.is_active == (1 if query.is_active else 0))
        if query.is_banned is not None:
            conditions.append(_accounts.c.is_banned == (1 if query.is_banned else 0))
        if query.search:
            needle = query.search.strip().lower()
            conditions.append(
                or_(
                    func.lower(_accounts.c.name).contains(needle, autoescape=True),
                    _accounts.c.email.contains(needle, autoescape=True),
                )
            )
        where = and_(*conditions) if conditions else None

        sort_col = _SORT_COLUMNS.get(query.sort_by, _accounts.c.created_at)
        order = sort_col.asc() if query.sort_order == "asc" else sort_col.desc()

        stmt = select(*_PUBLIC_ACCOUNT_COLUMNS)
        count_stmt = select(func.count()).select_from(_accounts)
        if where is not None:
            stmt = stmt.where(where)
            count_stmt = count_stmt.where(where)
        stmt = stmt.order_by(order, _accounts.c.id.desc()).offset((query.page - 1) * query.limit).limit(query.limit)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar() or 0
        return Page(items=[_row_to_account(r) for r in rows], total=total, page=query.page, limit=query.limit)

    def account_stats(self) -> AccountStats:
        """Aggregate account counts in a single pass plus a per-role GROUP BY."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    func.count().label("total"),
                    func.sum(case((and_(_accounts.c.is_active == 1, _accounts.c.is_banned == 0), 1), else_=0)).label(
                        "active"
                    ),
                    func.sum(case((_accounts.c.is_banned == 1, 1), else_=0)).label("banned"),
                    func.sum(case((_accounts.c.is_email_verified == 1, 1), else_=0)).label("verified"),
                )
            ).fetchone()
            role_rows = conn.execute(
                select(_accounts.c.role, func.count().label("n")).group_by(_accounts.c.role)
            ).fetchall()
        stats = AccountStats(
            total_accounts=row.total or 0,
            active_accounts=row.active or 0,
            banned_accounts=row.banned or 0,
            verified_accounts=row.verified or 0,
        )
        for role, n in role_rows:
            stats.accounts_by_role[role] = n
        return stats

    # ------------------------------------------------------------------
    # Login, verification, reset, ban
    # ------------------------------------------------------------------

    def record_login(self, session: Session) -> int:
        """Insert the new device session and stamp last_login in one transaction."""
        with self.engine.begin() as conn:
            result = conn.execute(_session_insert(session))
            conn.execute(
                _accounts.update().where(_accounts.c.id == session.account_id).values(last_login=session.created_at)
            )
        return result.inserted_primary_key[0]

    def set_verification_token(self, account_id: int, digest: str, expires_at: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    verification_token_digest=digest,
                    verification_token_expires_at=to_iso(expires_at),
                    updated_at=self._now(),
                )
            )
            conn.commit()

    def find_by_verification_digest(self, digest: str, now: datetime) -> Account | None:
        """Return the account holding this unexpired verification digest, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select_accounts(include_secrets=True).where(
                    (_accounts.c.verification_token_digest == digest)
                    & (_accounts.c.verification_token_expires_at > to_iso(now))
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def mark_email_verified(self, account_id: int) -> None:
        """Set is_email_verified and clear the verification token fields."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    is_email_verified=1,
                    verification_token_digest=None,
                    verification_token_expires_at=None,
                    updated_at=self._now(),
                )
            )
            conn.commit()

    def set_reset_token(self, account_id: int, digest: str, expires_at: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    reset_token_digest=digest,
                    reset_token_expires_at=to_iso(expires_at),
                    updated_at=self._now(),
                )
            )
            conn.commit()

    def find_by_reset_digest(self, digest: str, now: datetime) -> Account | None:
        """Return the account holding this unexpired reset digest, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select_accounts(include_secrets=True).where(
                    (_accounts.c.reset_token_digest == digest) & (_accounts.c.reset_token_expires_at > to_iso(now))
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def reset_password(self, account_id: int, password_digest: str) -> None:
        """Store a new password digest, clear the reset token, and drop every session."""
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    password_digest=password_digest,
                    reset_token_digest=None,
                    reset_token_expires_at=None,
                    updated_at=self._now(),
                )
            )
            conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))

    def ban_account(self, account_id: int, reason: str, banned_by: int) -> None:
        """Mark the account banned and drop every session (forced logout)."""
        now = self._now()
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(is_banned=1, ban_reason=reason, banned_by=banned_by, banned_at=now, updated_at=now)
            )
            conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))

    def unban_account(self, account_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(is_banned=0, ban_reason=None, banned_by=None, banned_at=None, updated_at=self._now())
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def add_session(self, session: Session) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_session_insert(session))
            conn.commit()
            return result.inserted_primary_key[0]

    def rotate_session(self, account_id: int, old_token: str, new_session: Session, now: datetime) -> bool:
        """Replace old_token with new_session atomically.

        Returns False (and inserts nothing) if old_token was not a live session
        for this account -- already rotated, logged out, or expired.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.account_id == account_id)
                    & (_sessions.c.token == old_token)
                    & (_sessions.c.expires_at > to_iso(now))
                )
            )
            if deleted.rowcount == 0:
                return False
            conn.execute(_session_insert(new_session))
        return True

    def remove_session(self, account_id: int, token: str) -> bool:
        """Delete one device's session. Returns False if it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.account_id == account_id) & (_sessions.c.token == token))
            )
            conn.commit()
        return result.rowcount > 0

    def clear_sessions(self, account_id: int) -> int:
        """Delete every session for the account. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    def list_sessions(self, account_id: int) -> list[Session]:
        """Return the account's sessions, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.account_id == account_id).order_by(_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired_sessions(self, now: datetime) -> int:
        """Delete expired sessions across all accounts. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= to_iso(now)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # API key queries
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> int:
        """Insert a new API key record and return its ID."""
        now = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    account_id=api_key.account_id,
                    name=api_key.name,
                    description=api_key.description,
                    key_digest=api_key.key_digest,
                    key_prefix=api_key.key_prefix,
                    permissions=json.dumps(list(api_key.permissions)),
                    rate_limit_per_minute=api_key.rate_limit.per_minute,
                    rate_limit_per_hour=api_key.rate_limit.per_hour,
                    rate_limit_per_day=api_key.rate_limit.per_day,
                    allowed_ips=json.dumps(list(api_key.allowed_ips)),
                    allowed_domains=json.dumps(list(api_key.allowed_domains)),
                    usage_count=0,
                    expires_at=api_key.expires_at,
                    is_active=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_api_key_by_digest(self, key_digest: str) -> ApiKey | None:
        """Look up an ACTIVE API key by its HMAC digest. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.key_digest == key_digest) & (_api_keys.c.is_active == 1))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def get_api_key(self, key_id: int, account_id: int) -> ApiKey | None:
        """Return the key only if it belongs to account_id (IDOR guard)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.id == key_id) & (_api_keys.c.account_id == account_id))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_api_keys(self, account_id: int) -> list[ApiKey]:
        """Return all of an account's keys, active or not, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select()
                .where(_api_keys.c.account_id == account_id)
                .order_by(_api_keys.c.created_at.desc(), _api_keys.c.id.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def count_active_api_keys(self, account_id: int, now: datetime) -> int:
        """Count keys that still authenticate: active and not past expires_at."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_api_keys)
                .where(
                    (_api_keys.c.account_id == account_id)
                    & (_api_keys.c.is_active == 1)
                    & (_api_keys.c.expires_at.is_(None) | (_api_keys.c.expires_at > to_iso(now)))
                )
            ).scalar()
        return result or 0

    def update_api_key(self, key_id: int, account_id: int, **fields) -> bool:
        """Update mutable key settings. Both id and owner must match.

        rate_limit must be a complete RateLimit; merging partial limits is the
        manager's job.
        """
        unknown = set(fields) - _UPDATABLE_API_KEY_FIELDS
        if unknown:
            raise ValueError(f"Unknown API key fields: {sorted(unknown)!r}")
        values: dict = {}
        for name in ("name", "description"):
            if name in fields:
                values[name] = fields[name]
        for name in ("permissions", "allowed_ips", "allowed_domains"):
            if name in fields:
                values[name] = json.dumps(list(fields[name]))
        if "rate_limit" in fields:
            limit: RateLimit = fields["rate_limit"]
            values["rate_limit_per_minute"] = limit.per_minute
            values["rate_limit_per_hour"] = limit.per_hour
            values["rate_limit_per_day"] = limit.per_day
        values["updated_at"] = self._now()
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & (_api_keys.c.account_id == account_id))
                .values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_api_key(self, key_id: int, account_id: int) -> bool:
        """Soft-disable a key. account_id is checked to prevent IDOR attacks.

        Returns True if a key was revoked, False if not found or wrong owner.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & (_api_keys.c.account_id == account_id))
                .values(is_active=0, updated_at=self._now())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_api_key(self, key_id: int, account_id: int) -> bool:
        """Hard-delete a key. Same ownership rule as deactivate_api_key()."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.delete().where((_api_keys.c.id == key_id) & (_api_keys.c.account_id == account_id))
            )
            conn.commit()
        return result.rowcount > 0

    def record_api_key_use(self, key_id: int) -> None:
        """Atomically bump usage_count and stamp last_used_at."""
        with self.engine.connect() as conn:
            conn.execute(
                _api_keys.update()
                .where(_api_keys.c.id == key_id)
                .values(usage_count=_api_keys.c.usage_count + 1, last_used_at=self._now())
            )
            conn.commit()

    def api_key_stats(self, account_id: int) -> ApiKeyStats:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    func.count().label("total"),
                    func.sum(case((_api_keys.c.is_active == 1, 1), else_=0)).label("active"),
                    func.sum(_api_keys.c.usage_count).label("usage"),
                ).where(_api_keys.c.account_id == account_id)
            ).fetchone()
        return ApiKeyStats(total_keys=row.total or 0, active_keys=row.active or 0, total_usage=row.usage or 0)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _select_accounts(include_secrets: bool):
        return _accounts.select() if include_secrets else select(*_PUBLIC_ACCOUNT_COLUMNS)


# ---------------------------------------------------------------------------
# Statement builders and row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _session_insert(session: Session):
    return _sessions.insert().values(
        account_id=session.account_id,
        token=session.token,
        created_at=session.created_at,
        expires_at=session.expires_at,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
    )


def _row_to_account(row) -> Account:
    # Secret columns are absent unless include_secrets=True was requested.
    m = row._mapping
    return Account(
        id=m["id"],
        name=m["name"],
        email=m["email"],
        role=m["role"],
        password_digest=m.get("password_digest"),
        is_email_verified=bool(m["is_email_verified"]),
        is_active=bool(m["is_active"]),
        is_banned=bool(m["is_banned"]),
        ban_reason=m["ban_reason"],
        banned_by=m["banned_by"],
        banned_at=m["banned_at"],
        verification_token_digest=m.get("verification_token_digest"),
        verification_token_expires_at=m.get("verification_token_expires_at"),
        reset_token_digest=m.get("reset_token_digest"),
        reset_token_expires_at=m.get("reset_token_expires_at"),
        last_login=m["last_login"],
        created_at=m["created_at"],
        updated_at=m["updated_at"],
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        account_id=row.account_id,
        token=row.token,
        created_at=row.created_at,
        expires_at=row.expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        account_id=row.account_id,
        name=row.name,
        description=row.description,
        key_digest=row.key_digest,
        key_prefix=row.key_prefix,
        permissions=json.loads(row.permissions),
        rate_limit=RateLimit(
            per_minute=row.rate_limit_per_minute,
            per_hour=row.rate_limit_per_hour,
            per_day=row.rate_limit_per_day,
        ),
        allowed_ips=json.loads(row.allowed_ips),
        allowed_domains=json.loads(row.allowed_domains),
        usage_count=row.usage_count,
        last_used_at=row.last_used_at,
        expires_at=row.expires_at,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
