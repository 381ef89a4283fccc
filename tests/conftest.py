"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of symbolica.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from symbolica.config import SymbolicaConfig  # noqa: E402
from symbolica.database.models import Base  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_engine(tmp_path) -> Engine:
    """File-backed SQLite engine with all Symbolica tables.

    A file (not ``sqlite://``) so that the worker threads used by
    ``run_db`` each get their own connection.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'symbolica-test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def test_config() -> SymbolicaConfig:
    """Defaults with zero retry delays so retry paths run instantly."""
    return SymbolicaConfig(
        retry_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        request_timeout=5.0,
    )


@pytest.fixture
def ctx(db_engine, test_config):
    """A fully wired SyncContext over the test database."""
    from symbolica.remote.rpc import register_server_functions
    from symbolica.sync.context import SyncContext

    context = SyncContext.from_config(db_engine, test_config)
    register_server_functions(context.client)
    return context


def make_token(
    sub: str = "user-1", username: str = "FixtureUser", is_admin: bool = False,
) -> str:
    """Create a user JWT.  Usable from any test module."""
    import jwt

    from symbolica.api.deps import JWT_ALGORITHM, JWT_SECRET

    payload = {"sub": sub, "username": username, "is_admin": is_admin}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def user_token() -> str:
    return make_token()


@pytest.fixture
def other_token() -> str:
    return make_token(sub="user-2", username="OtherUser")


@pytest.fixture
def admin_token() -> str:
    return make_token(sub="admin-1", username="FixtureAdmin", is_admin=True)
