"""
HTTP tests for the betting, wallet, auth and admin endpoints.
"""

import sqlite3
from decimal import Decimal
from unittest.mock import patch

import bcrypt
import pytest

from coinbet.config import settings
from coinbet.core.rng import Draw, rng
from coinbet.routers.api import limiter
from tests.conftest import auth_headers


def forced_draw(outcome, roll="1.00"):
    return patch.object(
        rng,
        "draw",
        return_value=Draw(seed="s", timestamp_ms=1, outcome=outcome, roll=Decimal(roll)),
    )


def bet(client, user_id="user-1", **body):
    payload = {"choice": "heads", "amount": 10, "level": 1}
    payload.update(body)
    return client.post("/api/bets", json=payload, headers=auth_headers(user_id))


# ==================== Betting ====================


def test_winning_bet(client, wallet):
    with forced_draw("heads"):
        response = bet(client)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "result": "heads",
        "won": True,
        "payout": 19.0,
        "newBalance": 109.0,
    }


def test_losing_bet(client, wallet):
    with forced_draw("tails"):
        response = bet(client)

    assert response.status_code == 200
    body = response.json()
    assert body["won"] is False
    assert body["payout"] == 0.0
    assert body["newBalance"] == 90.0


def test_bet_requires_auth(client, wallet):
    response = client.post("/api/bets", json={"choice": "heads", "amount": 10, "level": 1})
    assert response.status_code == 401
    assert response.json()["kind"] == "Unauthorized"

    response = client.post(
        "/api/bets",
        json={"choice": "heads", "amount": 10, "level": 1},
        headers={"Authorization": "Bearer not-a-real-token"},
    )
    assert response.status_code == 401


def test_bet_for_another_user_is_unauthorized(client, wallet, db):
    db.create_wallet("user-2", Decimal("100"))

    response = bet(client, userId="user-2")

    assert response.status_code == 401
    assert db.get_wallet("user-2").balance == Decimal("100.00")


@pytest.mark.parametrize(
    "body, kind",
    [
        ({"amount": 0}, "InvalidAmount"),
        ({"amount": "10"}, "InvalidAmount"),
        ({"amount": 1}, "InvalidAmount"),
        ({"amount": None}, "InvalidAmount"),
        ({"amount": 1e30}, "InvalidAmount"),
        ({"level": 9}, "InvalidTier"),
        ({"level": None}, "InvalidTier"),
        ({"choice": "edge"}, "InvalidChoice"),
    ],
)
def test_invalid_bets(client, wallet, db, body, kind):
    response = bet(client, **body)

    assert response.status_code == 400
    assert response.json()["kind"] == kind
    assert "error" in response.json()
    assert db.get_wallet("user-1").balance == Decimal("100.00")


def test_insufficient_balance(client, db):
    db.create_wallet("user-1", Decimal("5"))

    response = bet(client)

    assert response.status_code == 400
    assert response.json() == {"error": "Insufficient balance", "kind": "InsufficientBalance"}


def test_missing_wallet(client):
    response = bet(client)
    assert response.status_code == 404
    assert response.json()["kind"] == "WalletNotFound"


def test_malformed_body(client, wallet):
    response = client.post(
        "/api/bets",
        content="not json",
        headers={**auth_headers("user-1"), "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidRequest"


def test_storage_unavailable(client, wallet, db):
    with patch.object(db, "append_bet", side_effect=sqlite3.OperationalError("disk I/O error")):
        response = bet(client)

    assert response.status_code == 503
    assert response.json()["kind"] == "StorageUnavailable"
    assert db.get_wallet("user-1").balance == Decimal("100.00")


def test_history_and_summary(client, wallet):
    with forced_draw("tails"):
        bet(client)
        bet(client)

    response = client.get("/api/bets", headers=auth_headers("user-1"))

    assert response.status_code == 200
    body = response.json()
    assert len(body["bets"]) == 2
    assert body["bets"][0]["balance_after"] == 80.0
    assert "seed" not in body["bets"][0]
    assert body["summary"]["totalBets"] == 2
    assert body["summary"]["netProfit"] == -20.0


def test_verify_own_bet_only(client, wallet, db):
    bet(client)
    bet_id = client.get("/api/bets", headers=auth_headers("user-1")).json()["bets"][0]["id"]

    response = client.get(f"/api/bets/{bet_id}/verify", headers=auth_headers("user-1"))
    assert response.status_code == 200
    assert response.json()["verified"] is True

    response = client.get(f"/api/bets/{bet_id}/verify", headers=auth_headers("user-2"))
    assert response.status_code == 404
    assert response.json()["kind"] == "BetNotFound"


def test_public_game_settings(client):
    response = client.get("/api/game/settings")

    assert response.status_code == 200
    assert [t["id"] for t in response.json()["tiers"]] == [1, 2, 3]
    assert response.json()["min_stake"] == 1.5


# ==================== Wallet ====================


def test_wallet_endpoints(client, wallet):
    headers = auth_headers("user-1")

    response = client.post("/api/wallet/deposit", json={"amount": 50}, headers=headers)
    assert response.status_code == 200
    assert response.json()["newBalance"] == 150.0

    response = client.post(
        "/api/wallet/withdraw", json={"amount": 25, "pixKey": "key"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["newBalance"] == 125.0

    response = client.post("/api/wallet/withdraw", json={"amount": 25}, headers=headers)
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidWithdrawal"

    assert client.get("/api/wallet", headers=headers).json() == {
        "balance": 125.0,
        "totalDeposited": 50.0,
        "totalWithdrawn": 25.0,
    }
    transactions = client.get("/api/wallet/transactions", headers=headers).json()["transactions"]
    assert [tx["type"] for tx in transactions] == ["withdrawal", "deposit"]


# ==================== Auth ====================


def test_demo_login_flow(client):
    response = client.post("/auth/demo", json={"email": "Player@Example.com"})
    assert response.status_code == 200
    body = response.json()
    token = body["session_token"]

    again = client.post("/auth/demo", json={"email": "player@example.com"}).json()
    assert again["user_id"] == body["user_id"]

    headers = {"Authorization": f"Bearer {token}"}
    assert client.get("/api/wallet", headers=headers).json()["balance"] == 1000.0

    validated = client.post("/auth/validate", headers=headers).json()
    assert validated["account"]["email"] == "player@example.com"
    assert validated["account"]["is_demo"] is True


def test_demo_login_requires_email(client):
    response = client.post("/auth/demo", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidRequest"


def test_validate_rejects_bad_token(client):
    response = client.post("/auth/validate", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


# ==================== Admin ====================


@pytest.fixture
def admin_password():
    hashed = bcrypt.hashpw(b"hunter2", bcrypt.gensalt(rounds=4)).decode("utf-8")
    with patch.object(settings.security, "admin_password_hash", hashed):
        yield "hunter2"


def test_admin_login(client, admin_password):
    response = client.post(
        "/admin/login", json={"username": settings.security.admin_username, "password": "wrong"}
    )
    assert response.status_code == 401

    response = client.post(
        "/admin/login",
        json={"username": settings.security.admin_username, "password": admin_password},
    )
    assert response.status_code == 200
    assert "admin_session" in response.cookies


def test_admin_settings_require_session(client):
    assert client.get("/admin/game-settings").status_code == 403
    response = client.put("/admin/game-settings", json={"min_stake": 5, "tiers": []})
    assert response.status_code == 403
    assert response.json()["kind"] == "Forbidden"


def test_admin_updates_game_settings(client, wallet, admin_password):
    client.post(
        "/admin/login",
        json={"username": settings.security.admin_username, "password": admin_password},
    )

    response = client.put(
        "/admin/game-settings",
        json={
            "min_stake": 5,
            "tiers": [
                {"id": 1, "payout_multiplier": 2, "win_probability_percent": 45},
                {"id": 2, "payout_multiplier": 8, "win_probability_percent": 10},
            ],
        },
    )
    assert response.status_code == 200
    assert len(response.json()["tiers"]) == 2

    assert client.get("/api/game/settings").json()["min_stake"] == 5.0

    response = bet(client, amount=2)
    assert response.json()["kind"] == "InvalidAmount"

    response = bet(client, level=3)
    assert response.json()["kind"] == "InvalidTier"

    with forced_draw("heads"):
        response = bet(client, amount=10, level=1)
    assert response.json()["payout"] == 20.0


def test_admin_rejects_invalid_settings(client, admin_password):
    client.post(
        "/admin/login",
        json={"username": settings.security.admin_username, "password": admin_password},
    )

    response = client.put(
        "/admin/game-settings",
        json={
            "min_stake": 1.5,
            "tiers": [
                {"id": 1, "payout_multiplier": 5, "win_probability_percent": 45},
                {"id": 2, "payout_multiplier": 2, "win_probability_percent": 10},
            ],
        },
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidSettings"

    client.post("/admin/logout")
    assert client.get("/admin/game-settings").status_code == 403


def test_admin_reviews_withdrawals(client, wallet, admin_password):
    headers = auth_headers("user-1")
    first = client.post(
        "/api/wallet/withdraw", json={"amount": 30, "pixKey": "key"}, headers=headers
    ).json()["transactionId"]
    second = client.post(
        "/api/wallet/withdraw", json={"amount": 20, "pixKey": "key"}, headers=headers
    ).json()["transactionId"]

    assert client.post(f"/admin/withdrawals/{first}/approve").status_code == 403

    client.post(
        "/admin/login",
        json={"username": settings.security.admin_username, "password": admin_password},
    )

    pending = client.get("/admin/withdrawals").json()["withdrawals"]
    assert [tx["id"] for tx in pending] == [first, second]

    response = client.post(f"/admin/withdrawals/{first}/approve")
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = client.post(f"/admin/withdrawals/{second}/reject", json={})
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidWithdrawal"

    response = client.post(f"/admin/withdrawals/{second}/reject", json={"reason": "Invalid PIX key"})
    assert response.status_code == 200
    assert response.json()["newBalance"] == 70.0

    response = client.post(f"/admin/withdrawals/{first}/reject", json={"reason": "too late"})
    assert response.status_code == 409
    assert response.json()["kind"] == "WithdrawalAlreadyProcessed"

    response = client.post("/admin/withdrawals/9999/approve")
    assert response.status_code == 404
    assert response.json()["kind"] == "TransactionNotFound"

    assert client.get("/admin/withdrawals").json()["withdrawals"] == []


# ==================== Misc ====================


def test_health_and_security_headers(client):
    response = client.get("/health")

    assert response.json() == {"status": "ok"}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_rate_limit_applied_to_bets(client, wallet):
    limiter.enabled = True

    with patch.object(settings.rate_limit, "enabled", True), patch.object(
        settings.rate_limit, "bet_requests", "3/minute"
    ):
        for i in range(3):
            response = bet(client)
            assert response.status_code != 429, f"Request {i + 1}/4 should have succeeded"

        response = bet(client)
        assert response.status_code == 429
