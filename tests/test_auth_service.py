"""
tests/test_auth_service.py -- Unit tests for auth/service.AuthService.

Covers the credential-exchange rules end to end against a real SQLite store:
  - register / login, including the anti-enumeration guarantee
  - refresh rotation (single-use refresh tokens)
  - logout scoping, idempotence, and logout-all
  - email verification and password reset flows
  - best-effort side effects (email and activity failures never propagate)
"""

from __future__ import annotations

import pytest

from auth.models import ActivityQuery
from auth.service import AuthService
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
    TokenInvalid,
)

PASSWORD = "Passw0rd1"


class BrokenActivity:
    def record(self, **kwargs) -> None:
        raise RuntimeError("activity table is gone")


def _actions(activity, account_id: int) -> list[str]:
    return [a.action for a in activity.list(ActivityQuery(account_id=account_id)).items]


# ---------------------------------------------------------------------------
# Register / login
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_creates_account_session_and_email(self, service: AuthService, store, mailer, activity) -> None:
        result = service.register("Ann", "Ann@X.com", PASSWORD, ip_address="10.0.0.1", user_agent="pytest")

        assert result.account.email == "ann@x.com"
        assert result.account.role == "user"
        assert result.account.is_email_verified is False
        assert result.account.password_digest is None
        assert result.tokens.access_token and result.tokens.refresh_token

        sessions = store.list_sessions(result.account.id)
        assert len(sessions) == 1
        assert sessions[0].token == result.tokens.refresh_token
        assert sessions[0].ip_address == "10.0.0.1"

        assert [m[0] for m in mailer.sent] == ["verification"]
        assert _actions(activity, result.account.id) == ["register"]

    def test_password_is_stored_as_digest(self, service: AuthService, store) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        digest = store.get_by_id(result.account.id, include_secrets=True).password_digest
        assert digest != PASSWORD
        assert service.hasher.verify(PASSWORD, digest)

    def test_duplicate_email_is_conflict(self, service: AuthService) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        with pytest.raises(Conflict, match="already exists"):
            service.register("Other Ann", "ANN@x.com", PASSWORD)

    def test_email_failure_does_not_fail_registration(self, service: AuthService, mailer, store) -> None:
        mailer.fail = True
        result = service.register("Ann", "ann@x.com", PASSWORD)
        assert store.get_by_id(result.account.id) is not None

    def test_activity_failure_does_not_fail_registration(
        self, store, codec, hasher, mailer, clock
    ) -> None:
        service = AuthService(store, codec, hasher, mailer, BrokenActivity(), clock=clock)
        result = service.register("Ann", "ann@x.com", PASSWORD)
        assert result.account.id is not None


class TestLogin:
    def test_ann_scenario(self, service: AuthService, store, mailer) -> None:
        """register -> one session; wrong password -> 401; right password -> two sessions."""
        result = service.register("Ann", "ann@x.com", PASSWORD)
        assert len(store.list_sessions(result.account.id)) == 1
        assert mailer.sent[0][0] == "verification"

        with pytest.raises(InvalidCredentials) as exc_info:
            service.login("ann@x.com", "wrong")
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid email or password"

        login = service.login("ann@x.com", PASSWORD)
        assert login.account.id == result.account.id
        assert len(store.list_sessions(result.account.id)) == 2

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, service: AuthService) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong_password:
            service.login("ann@x.com", "Wr0ngPassword")
        with pytest.raises(InvalidCredentials) as unknown_email:
            service.login("nobody@x.com", PASSWORD)

        a, b = wrong_password.value, unknown_email.value
        assert (a.status_code, a.code, a.message) == (b.status_code, b.code, b.message)

    def test_login_is_case_insensitive_on_email(self, service: AuthService) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        assert service.login("ANN@X.COM", PASSWORD).account.email == "ann@x.com"

    def test_successful_login_stamps_last_login(self, service: AuthService, clock) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        clock.advance(minutes=5)
        assert service.login("ann@x.com", PASSWORD).account.last_login is not None

    def test_failed_and_successful_logins_are_audited(self, service: AuthService, activity) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        with pytest.raises(InvalidCredentials):
            service.login("ann@x.com", "wrong")
        service.login("ann@x.com", PASSWORD)

        details = [a.details for a in activity.list(ActivityQuery(account_id=account_id, action="login")).items]
        assert sorted(details) == ["Failed login attempt - invalid password", "Successful login"]

    def test_deactivated_account(self, service: AuthService, store) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        store.update_account(account_id, is_active=False)
        with pytest.raises(AccountDeactivated) as exc_info:
            service.login("ann@x.com", PASSWORD)
        assert exc_info.value.status_code == 403

    def test_deactivated_account_with_wrong_password_is_still_invalid_credentials(
        self, service: AuthService, store
    ) -> None:
        """Account state is only revealed to someone who knows the password."""
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        store.update_account(account_id, is_active=False)
        with pytest.raises(InvalidCredentials):
            service.login("ann@x.com", "wrong")

    def test_banned_account(self, service: AuthService, store) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        store.ban_account(account_id, "spam", account_id)
        with pytest.raises(AccountBanned, match="Reason: spam"):
            service.login("ann@x.com", PASSWORD)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_rotates(self, service: AuthService, store) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        rt1 = result.tokens.refresh_token

        pair = service.refresh(rt1)
        assert pair.refresh_token != rt1
        assert [s.token for s in store.list_sessions(result.account.id)] == [pair.refresh_token]

        with pytest.raises(InvalidOrExpiredRefreshToken):
            service.refresh(rt1)

    def test_rotated_token_keeps_working(self, service: AuthService) -> None:
        rt = service.register("Ann", "ann@x.com", PASSWORD).tokens.refresh_token
        for _ in range(3):
            rt = service.refresh(rt).refresh_token

    def test_access_token_cannot_refresh(self, service: AuthService) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        with pytest.raises(TokenInvalid):
            service.refresh(result.tokens.access_token)

    def test_deleted_account(self, service: AuthService, store) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        store.delete_account(result.account.id)
        with pytest.raises(AccountGone):
            service.refresh(result.tokens.refresh_token)

    def test_banned_account_cannot_refresh(self, service: AuthService, store) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        store.ban_account(result.account.id, "spam", result.account.id)
        with pytest.raises(AccountBanned):
            service.refresh(result.tokens.refresh_token)


class TestLogout:
    def test_logout_is_device_scoped(self, service: AuthService) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        a = service.login("ann@x.com", PASSWORD)
        b = service.login("ann@x.com", PASSWORD)

        service.logout(a.account.id, a.tokens.refresh_token)

        with pytest.raises(InvalidOrExpiredRefreshToken):
            service.refresh(a.tokens.refresh_token)
        assert service.refresh(b.tokens.refresh_token).refresh_token

    def test_logout_is_idempotent(self, service: AuthService, activity) -> None:
        result = service.register("Ann", "ann@x.com", PASSWORD)
        service.logout(result.account.id, result.tokens.refresh_token)
        service.logout(result.account.id, result.tokens.refresh_token)
        service.logout(result.account.id, "never-issued")
        assert _actions(activity, result.account.id).count("logout") == 1

    def test_logout_all(self, service: AuthService, store) -> None:
        first = service.register("Ann", "ann@x.com", PASSWORD)
        second = service.login("ann@x.com", PASSWORD)

        assert service.logout_all(first.account.id) == 2
        assert store.list_sessions(first.account.id) == []
        for token in (first.tokens.refresh_token, second.tokens.refresh_token):
            with pytest.raises(InvalidOrExpiredRefreshToken):
                service.refresh(token)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


class TestVerification:
    def test_verify_with_emailed_token(self, service: AuthService, mailer, activity) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        account = service.verify_email(mailer.last_token("verification"))
        assert account.id == account_id
        assert account.is_email_verified
        assert "email_verified" in _actions(activity, account_id)

    def test_token_is_single_use(self, service: AuthService, mailer) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        token = mailer.last_token("verification")
        service.verify_email(token)
        with pytest.raises(InvalidOrExpiredToken):
            service.verify_email(token)

    def test_expired_token(self, service: AuthService, mailer, clock) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        clock.advance(minutes=61)
        with pytest.raises(InvalidOrExpiredToken):
            service.verify_email(mailer.last_token("verification"))

    def test_resend_replaces_previous_token(self, service: AuthService, mailer) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        old = mailer.last_token("verification")
        service.send_verification(account_id)
        new = mailer.last_token("verification")
        assert new != old
        with pytest.raises(InvalidOrExpiredToken):
            service.verify_email(old)
        service.verify_email(new)

    def test_send_verification_when_already_verified(self, service: AuthService, mailer) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        service.verify_email(mailer.last_token("verification"))
        with pytest.raises(AlreadyVerified):
            service.send_verification(account_id)

    def test_send_verification_unknown_account(self, service: AuthService) -> None:
        with pytest.raises(NotFound):
            service.send_verification(999)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_forgot_unknown_email_is_silent(self, service: AuthService, mailer) -> None:
        assert service.forgot_password("nobody@x.com") is None
        assert mailer.sent == []

    def test_reset_invalidates_every_session(self, service: AuthService, mailer, store) -> None:
        first = service.register("Ann", "ann@x.com", PASSWORD)
        second = service.login("ann@x.com", PASSWORD)

        service.forgot_password("ann@x.com")
        service.reset_password(mailer.last_token("password_reset"), "N3wPassword")

        assert store.list_sessions(first.account.id) == []
        for token in (first.tokens.refresh_token, second.tokens.refresh_token):
            with pytest.raises(InvalidOrExpiredRefreshToken):
                service.refresh(token)

        with pytest.raises(InvalidCredentials):
            service.login("ann@x.com", PASSWORD)
        assert service.login("ann@x.com", "N3wPassword").account.id == first.account.id
        assert mailer.sent[-1][0] == "password_changed"

    def test_reset_token_single_use(self, service: AuthService, mailer) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        service.forgot_password("ann@x.com")
        token = mailer.last_token("password_reset")
        service.reset_password(token, "N3wPassword")
        with pytest.raises(InvalidOrExpiredToken):
            service.reset_password(token, "An0therPassword")

    def test_reset_token_expires(self, service: AuthService, mailer, clock) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        service.forgot_password("ann@x.com")
        clock.advance(minutes=61)
        with pytest.raises(InvalidOrExpiredToken):
            service.reset_password(mailer.last_token("password_reset"), "N3wPassword")

    def test_reset_is_audited(self, service: AuthService, mailer, activity) -> None:
        account_id = service.register("Ann", "ann@x.com", PASSWORD).account.id
        service.forgot_password("ann@x.com")
        service.reset_password(mailer.last_token("password_reset"), "N3wPassword")
        assert "password_reset" in _actions(activity, account_id)

    def test_mail_failure_during_reset_is_swallowed(self, service: AuthService, mailer) -> None:
        service.register("Ann", "ann@x.com", PASSWORD)
        service.forgot_password("ann@x.com")
        token = mailer.last_token("password_reset")
        mailer.fail = True
        service.reset_password(token, "N3wPassword")
        assert service.login("ann@x.com", "N3wPassword")
