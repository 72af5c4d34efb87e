"""
auth/service.py -- Credential exchange: register, login, refresh, logout,
email verification, and password reset.

Pattern: Service layer. AuthService owns the rules; AccountStore owns the
SQL; TokenCodec owns the JWT format. Routes translate HTTP to calls here and
AppError subclasses back to HTTP.

Rules that must not drift:
  Anti-enumeration. login() raises the same InvalidCredentials for an unknown
      email and for a wrong password, and burns one bcrypt comparison in the
      unknown-email case so timing matches too. forgot_password() returns
      normally whether or not the email exists.

  Server-side revocation. A refresh JWT is only honoured while its exact
      string is stored as an unexpired session row. logout / logout_all /
      reset_password / ban remove rows, and that is the only revocation.

  Single-use refresh tokens. refresh() rotates the session inside one store
      transaction, so a token that has been exchanged once never works again.

  Side effects are best-effort. Email and activity failures are logged and
      swallowed; they never fail the operation that triggered them.

Layer rule: no imports from api/ or notify/. The email sender is injected.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Protocol

from sqlalchemy.exc import IntegrityError

from auth.models import Account, AuthResult, Session, TokenPair, TokenPayload
from auth.opaque import digest_token, generate_opaque_token
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.clock import Clock, to_iso, utc_now
from core.errors import (
    AccountBanned,
    AccountDeactivated,
    AccountGone,
    AlreadyVerified,
    Conflict,
    InvalidCredentials,
    InvalidOrExpiredRefreshToken,
    InvalidOrExpiredToken,
    NotFound,
)

logger = logging.getLogger("credkeep.auth")


class Mailer(Protocol):
    def send_verification(self, to: str, name: str, token: str) -> None: ...

    def send_password_reset(self, to: str, name: str, token: str) -> None: ...

    def send_password_changed(self, to: str, name: str) -> None: ...


class ActivitySink(Protocol):
    def record(
        self,
        account_id: int,
        action: str,
        target_account_id: int | None = None,
        details: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None: ...


class AuthService:
    """Orchestrates every credential exchange against the account store.

    Usage:
        service = AuthService(store, codec, PasswordHasher(), mailer, activity)
        result = service.register("Ann", "ann@x.com", "Passw0rd1")
        tokens = service.refresh(result.tokens.refresh_token)
    """

    def __init__(
        self,
        store: AccountStore,
        codec: TokenCodec,
        hasher: PasswordHasher,
        mailer: Mailer,
        activity: ActivitySink,
        clock: Clock = utc_now,
        verification_ttl_minutes: int = 60,
        reset_ttl_minutes: int = 60,
    ) -> None:
        self.store = store
        self.codec = codec
        self.hasher = hasher
        self.mailer = mailer
        self.activity = activity
        self._clock = clock
        self.verification_ttl = timedelta(minutes=verification_ttl_minutes)
        self.reset_ttl = timedelta(minutes=reset_ttl_minutes)

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Create an account, open its first session, and send a verification email.

        Raises Conflict if the email is already registered (case-insensitive).
        """
        email = email.strip().lower()
        if self.store.get_by_email(email) is not None:
            raise Conflict("An account with this email already exists")

        digest = self.hasher.hash(password)
        try:
            account_id = self.store.create_account(Account(name=name, email=email, password_digest=digest))
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise Conflict("An account with this email already exists") from exc

        account = self.store.get_by_id(account_id)
        tokens = self._open_session(account, ip_address, user_agent, stamp_login=False)
        logger.info("Registered account %s", account_id)

        self._record(account_id, "register", ip_address=ip_address, user_agent=user_agent)
        self._send_verification_email(account)
        return AuthResult(account=account, tokens=tokens)

    def login(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Exchange email + password for a token pair and a new device session.

        Raises InvalidCredentials (unknown email or wrong password, identical
        message), AccountDeactivated, or AccountBanned.
        """
        account = self.store.get_by_email(email, include_secrets=True)
        if account is None:
            self.hasher.burn(password)
            raise InvalidCredentials()

        if not self.hasher.verify(password, account.password_digest or ""):
            self._record(
                account.id,
                "login",
                details="Failed login attempt - invalid password",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCredentials()

        if not account.is_active:
            raise AccountDeactivated()
        if account.is_banned:
            raise AccountBanned(account.ban_reason)

        tokens = self._open_session(account, ip_address, user_agent, stamp_login=True)
        self._record(account.id, "login", details="Successful login", ip_address=ip_address, user_agent=user_agent)
        return AuthResult(account=self.store.get_by_id(account.id), tokens=tokens)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a live refresh token for a new pair, retiring the old token.

        Raises TokenExpired / TokenInvalid if the JWT itself fails,
        AccountGone if the account was deleted, and
        InvalidOrExpiredRefreshToken if the session row is absent or expired.
        """
        claims = self.codec.verify_refresh_token(refresh_token)
        account = self.store.get_by_id(claims.account_id)
        if account is None:
            raise AccountGone()
        if not account.is_active:
            raise AccountDeactivated()
        if account.is_banned:
            raise AccountBanned(account.ban_reason)

        tokens = self.codec.issue_pair(_payload_for(account))
        now = self._clock()
        replacement = Session(
            account_id=account.id,
            token=tokens.refresh_token,
            created_at=to_iso(now),
            expires_at=to_iso(self.codec.refresh_expiry()),
        )
        if not self.store.rotate_session(account.id, refresh_token, replacement, now):
            raise InvalidOrExpiredRefreshToken()
        return tokens

    def logout(
        self,
        account_id: int,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Remove one device's session. Absent tokens are not an error."""
        removed = self.store.remove_session(account_id, refresh_token)
        if removed:
            self._record(account_id, "logout", details="Logged out", ip_address=ip_address, user_agent=user_agent)

    def logout_all(self, account_id: int, ip_address: str | None = None, user_agent: str | None = None) -> int:
        """Remove every session for the account. Returns how many were removed."""
        removed = self.store.clear_sessions(account_id)
        self._record(
            account_id,
            "logout",
            details=f"Logged out from all devices ({removed} sessions)",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return removed

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def send_verification(self, account_id: int) -> None:
        """Issue a fresh verification token and email it.

        Raises NotFound for an unknown account and AlreadyVerified if there is
        nothing to verify. Delivery failures are logged, not raised.
        """
        account = self.store.get_by_id(account_id)
        if account is None:
            raise NotFound("Account not found")
        if account.is_email_verified:
            raise AlreadyVerified()
        self._send_verification_email(account)

    def verify_email(self, token: str) -> Account:
        """Mark the account holding this token as verified.

        Raises InvalidOrExpiredToken if no account holds an unexpired digest
        of the token.
        """
        account = self.store.find_by_verification_digest(digest_token(token), self._clock())
        if account is None:
            raise InvalidOrExpiredToken("Invalid or expired verification token")
        self.store.mark_email_verified(account.id)
        self._record(account.id, "email_verified")
        return self.store.get_by_id(account.id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Email a reset link if the account exists. Always returns normally."""
        account = self.store.get_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return

        token = generate_opaque_token()
        self.store.set_reset_token(account.id, digest_token(token), self._clock() + self.reset_ttl)
        try:
            self.mailer.send_password_reset(account.email, account.name, token)
        except Exception:
            logger.exception("Failed to send password reset email for account %s", account.id)

    def reset_password(
        self,
        token: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Set a new password and sign the account out everywhere.

        Raises InvalidOrExpiredToken if the token is unknown or expired.
        """
        account = self.store.find_by_reset_digest(digest_token(token), self._clock())
        if account is None:
            raise InvalidOrExpiredToken("Invalid or expired reset token")

        self.store.reset_password(account.id, self.hasher.hash(new_password))
        logger.info("Password reset for account %s; all sessions cleared", account.id)
        self._record(
            account.id,
            "password_reset",
            details="Password reset via email token",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            self.mailer.send_password_changed(account.email, account.name)
        except Exception:
            logger.exception("Failed to send password changed email for account %s", account.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_session(
        self,
        account: Account,
        ip_address: str | None,
        user_agent: str | None,
        stamp_login: bool,
    ) -> TokenPair:
        tokens = self.codec.issue_pair(_payload_for(account))
        session = Session(
            account_id=account.id,
            token=tokens.refresh_token,
            created_at=to_iso(self._clock()),
            expires_at=to_iso(self.codec.refresh_expiry()),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if stamp_login:
            self.store.record_login(session)
        else:
            self.store.add_session(session)
        return tokens

    def _send_verification_email(self, account: Account) -> None:
        token = generate_opaque_token()
        self.store.set_verification_token(account.id, digest_token(token), self._clock() + self.verification_ttl)
        try:
            self.mailer.send_verification(account.email, account.name, token)
        except Exception:
            logger.exception("Failed to send verification email for account %s", account.id)

    def _record(self, account_id: int, action: str, **kwargs) -> None:
        try:
            self.activity.record(account_id=account_id, action=action, **kwargs)
        except Exception:
            logger.exception("Activity sink failed for %s on account %s", action, account_id)


def _payload_for(account: Account) -> TokenPayload:
    return TokenPayload(account_id=account.id, email=account.email, role=account.role)
