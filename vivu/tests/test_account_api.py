"""
HTTP surface for accounts, the search gate and promo redemption,
including the normalized error contract.
"""
from datetime import timedelta

from vivu.core.auth import issue_jwt
from vivu.features.promos.service import create_promo_code, seed_default_promo_codes
from vivu.models.promo_code import PromoKind


def test_register_starts_trial(client):
    resp = client.post("/v1/account", json={"email": " Traveller@Example.com ", "display_name": "Lan"})
    assert resp.status_code == 201
    account = resp.json()["account"]
    assert account["email"] == "traveller@example.com"
    assert account["subscription"]["kind"] == "trial"
    assert account["usage"]["trial_consumed"] is False
    assert account["can_use_trial"] is True
    assert account["state"] == "trial_available"


def test_duplicate_email_conflict(client):
    client.post("/v1/account", json={"email": "dup@example.com"})
    resp = client.post("/v1/account", json={"email": "DUP@example.com"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "email_taken"


def test_invalid_email(client):
    resp = client.post("/v1/account", json={"email": "not-an-email"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_email"


def test_me_requires_identity(client):
    resp = client.get("/v1/account/me")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["code"] == "unauthorized"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_me_with_header_creates_account(client):
    resp = client.get("/v1/account/me", headers={"X-User-Id": "header-user"})
    assert resp.status_code == 200
    account = resp.json()["account"]
    assert account["account_id"] == "header-user"
    assert account["state"] == "trial_available"


def test_me_with_jwt(client):
    token = issue_jwt("jwt-user")
    resp = client.get("/v1/account/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["account"]["account_id"] == "jwt-user"


def test_bad_jwt_rejected(client):
    resp = client.get("/v1/account/me", headers={"Authorization": "Bearer not.a.token"})
    assert resp.status_code == 401


def test_search_gate_flow(client):
    headers = {"X-User-Id": "searcher"}
    first = client.post("/v1/search/authorize", headers=headers)
    assert first.status_code == 200
    assert first.json()["via_trial"] is True
    assert first.json()["account"]["state"] == "trial_used"

    second = client.post("/v1/search/authorize", headers=headers)
    assert second.status_code == 402
    body = second.json()
    assert body["error"]["code"] == "subscription_required"
    assert body["error"]["request_id"] == second.headers["x-request-id"]


def test_request_id_is_echoed(client):
    resp = client.get("/v1/account/me", headers={"X-User-Id": "echo", "x-request-id": "rid-123"})
    assert resp.headers["x-request-id"] == "rid-123"


def test_promo_apply_unlocks_search(client, clock):
    seed_default_promo_codes(clock)
    headers = {"X-User-Id": "promo-user"}
    client.post("/v1/search/authorize", headers=headers)

    resp = client.post("/v1/promo/apply", headers=headers, json={"code": "vivu1mon"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["promo"] == {"code": "VIVU1MON", "kind": "monthly", "duration_months": 1}
    account = body["account"]
    assert account["subscription"]["kind"] == "monthly"
    assert account["state"] == "active"
    # Stacked onto the unexpired 24h trial window
    assert account["subscription"]["end_date"].startswith("2025-02-16T12:00:00")
    assert account["remaining_days"] == 32
    assert [r["code"] for r in account["redeemed_promo_codes"]] == ["VIVU1MON"]

    assert client.post("/v1/search/authorize", headers=headers).status_code == 200

    clock.advance(timedelta(days=31))
    assert client.post("/v1/search/authorize", headers=headers).status_code == 200
    clock.advance(timedelta(days=1))
    assert client.post("/v1/search/authorize", headers=headers).status_code == 402


def test_promo_error_codes(client, clock):
    create_promo_code("SOLO", PromoKind.MONTHLY, 1, max_redemptions=1, clock=clock)
    alice = {"X-User-Id": "alice"}
    bob = {"X-User-Id": "bob"}

    missing = client.post("/v1/promo/apply", headers=alice, json={})
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "invalid_promo_code"

    unknown = client.post("/v1/promo/apply", headers=alice, json={"code": "GHOST"})
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "promo_not_found"
    assert unknown.json()["error"]["kind"] == "NotFound"

    assert client.post("/v1/promo/apply", headers=alice, json={"code": "SOLO"}).status_code == 200

    exhausted = client.post("/v1/promo/apply", headers=bob, json={"code": "SOLO"})
    assert exhausted.status_code == 409
    assert exhausted.json()["error"]["code"] == "promo_not_redeemable"


def test_promo_already_used_code(client, clock):
    create_promo_code("OPEN", PromoKind.MONTHLY, 1, max_redemptions=None, clock=clock)
    headers = {"X-User-Id": "carol"}
    client.post("/v1/promo/apply", headers=headers, json={"code": "OPEN"})
    again = client.post("/v1/promo/apply", headers=headers, json={"code": "OPEN"})
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "promo_already_used"


def test_health(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json() == {"status": "ok"}


def test_readyz_reports_missing_tables(client):
    from vivu.core.database import get_engine, promo_redemptions

    promo_redemptions.drop(get_engine())
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "promo_redemptions" in resp.json()["detail"]


def test_unexpected_error_is_normalized(monkeypatch):
    from fastapi.testclient import TestClient
    from vivu.main import app

    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("vivu.api.search.authorize_search", explode)
    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post("/v1/search/authorize", headers={"X-User-Id": "unlucky"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "boom" not in body["detail"]


def test_register_with_password_returns_token(client):
    resp = client.post(
        "/v1/account",
        json={"email": "hoa@example.com", "display_name": "Hoa", "password": "pho-every-day"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    me = client.get("/v1/account/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["account"]["email"] == "hoa@example.com"


def test_register_rejects_short_password(client):
    resp = client.post("/v1/account", json={"email": "short@example.com", "password": "1234"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "weak_password"


def test_login_issues_token(client):
    client.post("/v1/account", json={"email": "minh@example.com", "password": "ha-long-bay"})

    resp = client.post("/v1/account/login", json={"email": " MINH@example.com ", "password": "ha-long-bay"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["account"]["email"] == "minh@example.com"
    assert body["account"]["state"] == "trial_available"
    assert body["expires_in"] > 0

    me = client.get("/v1/account/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.json()["account"]["account_id"] == body["account"]["account_id"]


def test_login_failures_look_the_same(client):
    client.post("/v1/account", json={"email": "tuan@example.com", "password": "correct-horse"})
    # Registered without a password: header-only accounts cannot log in
    client.post("/v1/account", json={"email": "nopass@example.com"})

    attempts = [
        {"email": "tuan@example.com", "password": "wrong-horse"},
        {"email": "ghost@example.com", "password": "correct-horse"},
        {"email": "nopass@example.com", "password": "anything-at-all"},
    ]
    for payload in attempts:
        resp = client.post("/v1/account/login", json=payload)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"
        assert resp.json()["error"]["message"] == "Invalid email or password"


def test_refresh_requires_bearer_token(client):
    assert client.post("/v1/account/refresh", headers={"X-User-Id": "header-only"}).status_code == 401

    registered = client.post("/v1/account", json={"email": "lan@example.com", "password": "mekong-delta"}).json()
    resp = client.post("/v1/account/refresh", headers={"Authorization": f"Bearer {registered['token']}"})
    assert resp.status_code == 200
    fresh = resp.json()["token"]
    me = client.get("/v1/account/me", headers={"Authorization": f"Bearer {fresh}"})
    assert me.json()["account"]["email"] == "lan@example.com"


def test_refresh_rejects_expired_token(client):
    registered = client.post("/v1/account", json={"email": "old@example.com", "password": "hue-citadel"}).json()
    stale = issue_jwt(registered["account"]["account_id"], expires_in_seconds=-10)
    resp = client.post("/v1/account/refresh", headers={"Authorization": f"Bearer {stale}"})
    assert resp.status_code == 401


def test_login_without_jwt_secret_is_unavailable(client, monkeypatch):
    from vivu.core.config import settings

    client.post("/v1/account", json={"email": "later@example.com", "password": "sapa-rice-fields"})
    monkeypatch.setattr(settings, "JWT_SECRET", None)
    resp = client.post("/v1/account/login", json={"email": "later@example.com", "password": "sapa-rice-fields"})
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "auth_disabled"


def test_subscription_status_route(client):
    headers = {"X-User-Id": "status-check"}
    before = client.get("/v1/account/subscription", headers=headers).json()
    assert before == {
        "is_subscription_active": True,
        "can_use_trial": True,
        "state": "trial_available",
        "remaining_days": None,
    }
    client.post("/v1/search/authorize", headers=headers)
    after = client.get("/v1/account/subscription", headers=headers).json()
    assert after["state"] == "trial_used"
    assert after["is_subscription_active"] is False
