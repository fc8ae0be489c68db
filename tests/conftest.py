from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from coinbet.core.database import Database
from coinbet.core.rng import Draw, TrueRNG
from coinbet.core.security import SESSIONS, issue_token
from coinbet.core.tiers import get_default_game_settings
from coinbet.main import create_app
from coinbet.routers.api import limiter


class FixedRNG(TrueRNG):
    """Returns the same draw every time and counts how often it was asked."""

    SEED = "00000000-0000-4000-8000-000000000000"
    TIMESTAMP_MS = 1_700_000_000_000

    def __init__(self, outcome="heads", roll="1.00"):
        self.outcome = outcome
        self.roll = Decimal(roll)
        self.calls = 0

    def draw(self) -> Draw:
        self.calls += 1
        return Draw(
            seed=self.SEED,
            timestamp_ms=self.TIMESTAMP_MS,
            outcome=self.outcome,
            roll=self.roll,
        )


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


@pytest.fixture(autouse=True)
def no_rate_limits():
    # The limiter is process-wide; tests that need it turn it back on
    limiter.reset()
    limiter.enabled = False
    yield
    limiter.enabled = True
    limiter.reset()


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "coinbet-test.db", busy_timeout=2.0)
    yield database
    database.close()


@pytest.fixture
def game_settings():
    return get_default_game_settings()


@pytest.fixture
def wallet(db):
    """A user with 100.00 in their wallet."""
    return db.create_wallet("user-1", Decimal("100.00"))


@pytest.fixture
def client(db):
    app = create_app(db)
    with TestClient(app) as c:
        yield c
    SESSIONS.clear()
