"""
auth/activity.py -- Append-only audit trail of account events.

record() is best-effort: a failed insert is logged and swallowed so that an
audit hiccup can never fail a login, registration, or admin action.

The activities table lives in its own MetaData with no foreign key to
accounts. Entries outlive the account they describe.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, and_, func, select
from sqlalchemy.engine import Engine

from auth.models import ACTIVITY_ACTIONS, Activity, ActivityQuery, Page
from core.clock import Clock, to_iso, utc_now

logger = logging.getLogger("credkeep.activity")

_metadata = MetaData()

_activities = Table(
    "activities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("action", String(32), nullable=False, index=True),
    Column("target_account_id", Integer),
    Column("details", Text),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False, index=True),
)


class ActivityLog:
    """Records and queries activity entries.

    Usage:
        log = ActivityLog(store.engine)
        log.record(account_id=1, action="login", ip_address="10.0.0.1")
        page = log.list(ActivityQuery(account_id=1))
    """

    def __init__(self, engine: Engine, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock
        _metadata.create_all(self.engine)

    def record(
        self,
        account_id: int,
        action: str,
        target_account_id: int | None = None,
        details: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Append one entry. Never raises."""
        if action not in ACTIVITY_ACTIONS:
            logger.warning("Dropping activity with unknown action %r for account %s", action, account_id)
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _activities.insert().values(
                        account_id=account_id,
                        action=action,
                        target_account_id=target_account_id,
                        details=details,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        created_at=to_iso(self._clock()),
                    )
                )
                conn.commit()
        except Exception:
            logger.exception("Failed to record %s activity for account %s", action, account_id)

    def list(self, query: ActivityQuery) -> Page:
        """Return a newest-first page of entries matching the query filters."""
        conditions = []
        if query.account_id is not None:
            conditions.append(_activities.c.account_id == query.account_id)
        if query.action:
            conditions.append(_activities.c.action == query.action)
        if query.start:
            conditions.append(_activities.c.created_at >= query.start)
        if query.end:
            conditions.append(_activities.c.created_at <= query.end)

        stmt = _activities.select()
        count_stmt = select(func.count()).select_from(_activities)
        if conditions:
            stmt = stmt.where(and_(*conditions))
            count_stmt = count_stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(_activities.c.created_at.desc(), _activities.c.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar() or 0
        return Page(items=[_row_to_activity(r) for r in rows], total=total, page=query.page, limit=query.limit)

    def recent_for_account(self, account_id: int, limit: int = 10) -> list[Activity]:
        return self.list(ActivityQuery(account_id=account_id, limit=limit)).items

    def stats(self) -> dict:
        """Counts per action plus the number of entries in the last 24 hours."""
        since = to_iso(self._clock() - timedelta(hours=24))
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_activities.c.action, func.count().label("n"))
                .group_by(_activities.c.action)
                .order_by(func.count().desc())
            ).fetchall()
            recent = (
                conn.execute(
                    select(func.count()).select_from(_activities).where(_activities.c.created_at >= since)
                ).scalar()
                or 0
            )
        return {
            "by_action": {action: n for action, n in rows},
            "last_24h": recent,
        }

    def cleanup(self, days_to_keep: int = 90) -> int:
        """Delete entries older than days_to_keep. Returns the number removed."""
        cutoff = to_iso(self._clock() - timedelta(days=days_to_keep))
        with self.engine.connect() as conn:
            result = conn.execute(_activities.delete().where(_activities.c.created_at < cutoff))
            conn.commit()
        logger.info("Activity cleanup removed %d entries older than %d days", result.rowcount, days_to_keep)
        return result.rowcount


def _row_to_activity(row) -> Activity:
    return Activity(
        id=row.id,
        account_id=row.account_id,
        action=row.action,
        target_account_id=row.target_account_id,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
