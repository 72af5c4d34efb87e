"""
tests/test_cli.py -- Tests for the credkeep command line in main.py.
"""

from __future__ import annotations

import io
from datetime import timedelta

import pytest

import main as cli
from auth.models import Session
from core.clock import to_iso, utc_now
from core.config import get_settings


@pytest.fixture
def cli_db(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    settings = get_settings().model_copy(update={"database_url": url, "bcrypt_rounds": 4})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return url


class TestCreateAdmin:
    def test_creates_verified_admin(self, store) -> None:
        account_id = cli.create_admin(store, "Ops", "Ops@Example.com", "S3curePass", rounds=4)
        account = store.get_by_id(account_id)
        assert account.role == "admin"
        assert account.is_email_verified is True
        assert account.email == "ops@example.com"

    def test_weak_password(self, store) -> None:
        with pytest.raises(ValueError, match="uppercase"):
            cli.create_admin(store, "Ops", "ops@example.com", "weakpass", rounds=4)

    def test_duplicate_email(self, store) -> None:
        cli.create_admin(store, "Ops", "ops@example.com", "S3curePass", rounds=4)
        with pytest.raises(ValueError, match="already exists"):
            cli.create_admin(store, "Ops", "ops@example.com", "S3curePass", rounds=4)


class TestMain:
    def test_no_command_prints_help(self, capsys) -> None:
        assert cli.main([]) == 1
        assert "create-admin" in capsys.readouterr().out

    def test_create_admin_from_stdin(self, cli_db, monkeypatch, capsys) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("S3curePass\n"))
        rc = cli.main(["create-admin", "--name", "Ops", "--email", "ops@example.com", "--password-stdin"])
        assert rc == 0
        assert "ops@example.com" in capsys.readouterr().out

        monkeypatch.setattr("sys.stdin", io.StringIO("S3curePass\n"))
        rc = cli.main(["create-admin", "--name", "Ops", "--email", "ops@example.com", "--password-stdin"])
        assert rc == 1
        assert "already exists" in capsys.readouterr().err

    def test_purge_sessions(self, cli_db, capsys) -> None:
        store = cli.AccountStore(cli_db)
        account_id = cli.create_admin(store, "Ops", "ops@example.com", "S3curePass", rounds=4)
        now = utc_now()
        store.add_session(
            Session(
                account_id=account_id,
                token="stale",
                created_at=to_iso(now - timedelta(days=40)),
                expires_at=to_iso(now - timedelta(days=10)),
            )
        )
        store.close()

        assert cli.main(["purge-sessions"]) == 0
        assert "1 expired session(s) removed." in capsys.readouterr().out

    def test_cleanup_rejects_zero_days(self, cli_db, capsys) -> None:
        assert cli.main(["cleanup-activity", "--days", "0"]) == 1
        assert "--days" in capsys.readouterr().err
