from __future__ import annotations

from pathlib import Path

import anyio
import pytest

import main
from main import _parse_args
from oripay.documents import SQLiteDocumentStore
from oripay.identity import LocalIdentityProvider


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"
    assert args.port == 8000


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_management_subcommands_are_available() -> None:
    assert _parse_args(["init-db"]).command == "init-db"
    assert _parse_args(["grant-admin", "a@b.com"]).email == "a@b.com"
    assert _parse_args(["reconcile", "--repair"]).repair is True
    assert _parse_args(["seed", "content.yaml"]).file == Path("content.yaml")
    create = _parse_args(["create-admin", "a@b.com", "--name", "Ops"])
    assert create.command == "create-admin"
    assert create.name == "Ops"


@pytest.fixture()
def db_path(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("ORIPAY_DB_PATH", str(path))
    return path


def test_create_admin_command(db_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(main, "getpass", lambda prompt="": "secret1")

    main.main(["create-admin", "Ops@Example.com", "--name", "Ops"])

    assert "Created admin account" in capsys.readouterr().out
    identity = LocalIdentityProvider(db_path)
    user = anyio.run(identity.get_identity_by_email, "ops@example.com")
    store = SQLiteDocumentStore(db_path)
    assert anyio.run(store.get, "admins", user.uid)["email"] == "ops@example.com"
    assert anyio.run(store.get, "users", user.uid)["kycStatus"] == "verified"

    main.main(["revoke-admin", "ops@example.com"])
    assert anyio.run(store.get, "admins", user.uid) is None


def test_grant_admin_for_unknown_account(db_path: Path) -> None:
    with pytest.raises(SystemExit):
        main.main(["grant-admin", "ghost@example.com"])


def test_seed_command_loads_bundled_content(db_path: Path, capsys) -> None:
    seed = Path(__file__).resolve().parents[1] / "config" / "content.yaml"

    main.main(["seed", str(seed)])

    assert "Seeded" in capsys.readouterr().out
    store = SQLiteDocumentStore(db_path)
    assert anyio.run(store.get, "currencies", "KES")["name"] == "Kenyan Shilling"


def test_reconcile_command_reports_orphans(db_path: Path, capsys) -> None:
    identity = LocalIdentityProvider(db_path)
    identity.initialize()
    anyio.run(identity.create_identity, "orphan@example.com", "secret1")

    main.main(["reconcile", "--repair"])

    output = capsys.readouterr().out
    assert "orphan@example.com" in output
    assert "placeholder written" in output

    main.main(["reconcile"])
    assert "Every identity has a profile document." in capsys.readouterr().out
