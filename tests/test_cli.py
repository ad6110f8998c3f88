"""Tests for main.py -- the operator command line.

Each test points DATABASE_URL at a temp SQLite file and clears the
get_settings() cache so the CLI builds its own Settings from the env.
"""

import pytest

import main as cli
from core.config import get_settings


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("SECRET_KEY", "cli-test-secret-key-0123456789abcdef")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _passwords(monkeypatch, *answers: str) -> None:
    it = iter(answers)
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(it))


def test_create_admin_then_audit(cli_env, monkeypatch, capsys) -> None:
    _passwords(monkeypatch, "Str0ngPassw0rd", "Str0ngPassw0rd")
    assert cli.main(["create-admin", "alice", "--email", "alice@example.com"]) == 0
    assert "Created admin 'alice'" in capsys.readouterr().out

    assert cli.main(["audit", "--limit", "5"]) == 0
    out = capsys.readouterr().out
    assert "admin_created" in out


def test_create_admin_password_mismatch(cli_env, monkeypatch, capsys) -> None:
    _passwords(monkeypatch, "Str0ngPassw0rd", "Different1A")
    assert cli.main(["create-admin", "alice"]) == 1
    assert "do not match" in capsys.readouterr().out


def test_create_admin_policy_failure(cli_env, monkeypatch, capsys) -> None:
    _passwords(monkeypatch, "weak", "weak")
    assert cli.main(["create-admin", "alice"]) == 1
    assert "VALIDATION_FAILED" in capsys.readouterr().out


def test_purge_tokens(cli_env, capsys) -> None:
    assert cli.main(["purge-tokens"]) == 0
    assert "Purged 0 expired refresh token(s)." in capsys.readouterr().out


def test_audit_rejects_bad_limit(cli_env, capsys) -> None:
    assert cli.main(["audit", "--limit", "0"]) == 1
    assert "VALIDATION_FAILED" in capsys.readouterr().out
