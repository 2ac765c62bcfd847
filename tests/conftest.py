# Ensure the repository root is on sys.path so `scribe_printer` can be imported in tests,
# and provide shared fixtures for the backend and the client.

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from scribe_printer import create_app  # noqa: E402
from scribe_printer.core import db as dbh  # noqa: E402
from scribe_printer.core.auth import MemberAuth  # noqa: E402

JWT_SECRET = "test-secret"


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "scribe.db")
    monkeypatch.setenv("SCRIBE_DB_PATH", path)
    monkeypatch.setenv("SCRIBE_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("SCRIBE_JWT_SECRET", JWT_SECRET)
    return path


@pytest.fixture
def db(db_path):
    conn = dbh.connect(db_path)
    yield conn
    conn.close()


@pytest.fixture
def household(db):
    """
    A household with one member (user-1) and a printer.
    """
    home = dbh.create_household("Home", db=db)
    dbh.add_member(home["id"], "user-1", role="owner", db=db)
    printer = dbh.create_printer(home["id"], "Kitchen Printer", db=db)
    return {"id": home["id"], "user_id": "user-1", "printer": printer}


@pytest.fixture
def bare_household(db):
    """
    A household whose member (user-2) has not added a printer yet.
    """
    home = dbh.create_household("Flat", db=db)
    dbh.add_member(home["id"], "user-2", role="owner", db=db)
    return {"id": home["id"], "user_id": "user-2"}


@pytest.fixture
def app(db_path):
    app = create_app(
        config_overrides={
            "DB_PATH": db_path,
            "JWT_SECRET": JWT_SECRET,
            "TESTING": True,
            "FEED_KEEPALIVE_SECONDS": 0.05,
        }
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(user_id: str) -> dict:
    token = MemberAuth(JWT_SECRET).generate_token(user_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(household):
    return bearer(household["user_id"])


@pytest.fixture
def bearer_for():
    return bearer
