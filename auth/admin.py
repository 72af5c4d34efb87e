"""
auth/admin.py -- Administrative account operations.

Every mutating method takes the acting account's id. Self-targeted
delete, ban, and role change are refused with Forbidden so an admin cannot
lock themselves out or quietly escalate/demote their own account.

Ban is a forced logout: the store clears every session in the same
transaction that sets the flag, and the access gate re-reads ban state on
every request, so outstanding access tokens stop working immediately.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.activity import ActivityLog
from auth.gate import guard_self_action
from auth.models import ROLES, Account, AccountQuery, AccountStats, Page
from auth.store import AccountStore
from core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger("credkeep.auth.admin")


class AccountAdmin:
    def __init__(self, store: AccountStore, activity: ActivityLog) -> None:
        self.store = store
        self.activity = activity

    def list_accounts(self, query: AccountQuery) -> Page:
        return self.store.list_accounts(query)

    def get_account(self, account_id: int) -> Account:
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("User not found")
        return account

    def update_account(self, account_id: int, actor_id: int, **fields) -> Account:
        """Update name, email, or is_active.

        Raises NotFound, Conflict (email taken by another account), or
        Forbidden (deactivating yourself).
        """
        account = self.get_account(account_id)
        fields = {k: v for k, v in fields.items() if v is not None}
        if not fields:
            raise ValidationFailed("No fields to update.", code="no_changes")

        if fields.get("is_active") is False:
            guard_self_action(account_id, actor_id, "You cannot deactivate your own account")

        if "email" in fields:
            email = fields["email"].strip().lower()
            existing = self.store.get_by_email(email)
            if existing is not None and existing.id != account.id:
                raise Conflict("Email already in use")
            fields["email"] = email

        try:
            self.store.update_account(account_id, **fields)
        except IntegrityError as exc:
            raise Conflict("Email already in use") from exc

        self.activity.record(
            account_id=actor_id,
            action="profile_updated",
            target_account_id=account_id,
            details=f"Updated fields: {', '.join(sorted(fields))}",
        )
        return self.get_account(account_id)

    def delete_account(self, account_id: int, actor_id: int) -> None:
        guard_self_action(account_id, actor_id, "You cannot delete your own account")
        if not self.store.delete_account(account_id):
            raise NotFound("User not found")
        logger.info("Account %s deleted by %s", account_id, actor_id)

    def ban(self, account_id: int, reason: str, actor_id: int) -> Account:
        """Ban an account and drop all of its sessions."""
        guard_self_action(account_id, actor_id, "You cannot ban yourself")
        account = self.get_account(account_id)
        if account.is_banned:
            raise ValidationFailed("User is already banned", code="already_banned")
        if account.role == "admin":
            raise Forbidden("Cannot ban admin users")

        self.store.ban_account(account_id, reason, actor_id)
        logger.info("Account %s banned by %s", account_id, actor_id)
        self.activity.record(
            account_id=actor_id,
            action="user_banned",
            target_account_id=account_id,
            details=f"Reason: {reason}",
        )
        return self.get_account(account_id)

    def unban(self, account_id: int, actor_id: int) -> Account:
        account = self.get_account(account_id)
        if not account.is_banned:
            raise ValidationFailed("User is not banned", code="not_banned")

        self.store.unban_account(account_id)
        logger.info("Account %s unbanned by %s", account_id, actor_id)
        self.activity.record(account_id=actor_id, action="user_unbanned", target_account_id=account_id)
        return self.get_account(account_id)

    def change_role(self, account_id: int, role: str, actor_id: int) -> Account:
        guard_self_action(account_id, actor_id, "You cannot change your own role")
        if role not in ROLES:
            raise ValidationFailed("Invalid role", code="invalid_role")
        account = self.get_account(account_id)

        self.store.update_account(account_id, role=role)
        self.activity.record(
            account_id=actor_id,
            action="role_changed",
            target_account_id=account_id,
            details=f"Role changed from {account.role} to {role}",
        )
        return self.get_account(account_id)

    def stats(self) -> AccountStats:
        return self.store.account_stats()
