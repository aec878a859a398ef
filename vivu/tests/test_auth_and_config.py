"""Auth helpers and startup config validation."""

import logging

import pytest
from fastapi import HTTPException

from vivu.core.auth import issue_jwt, verify_jwt
from vivu.core.config import Settings, config_problems, settings, validate_config
from vivu.features.accounts.service import get_or_create_account
from vivu.features.accounts.store import get_account


def test_jwt_round_trip():
    assert verify_jwt(issue_jwt("acct-42")) == "acct-42"


def test_expired_jwt():
    token = issue_jwt("acct-42", expires_in_seconds=-10)
    with pytest.raises(HTTPException) as exc_info:
        verify_jwt(token)
    assert exc_info.value.detail == "Token expired"


def test_verify_skipped_without_secret(monkeypatch):
    token = issue_jwt("acct-42")
    monkeypatch.setattr(settings, "JWT_SECRET", None)
    assert verify_jwt(token) is None


def test_header_auth_can_be_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_HEADER_AUTH", False)
    resp = client.get("/v1/account/me", headers={"X-User-Id": "sneaky"})
    assert resp.status_code == 401
    assert get_account("sneaky") is None


def test_get_or_create_is_stable(clock):
    first = get_or_create_account("repeat-visitor", clock)
    second = get_or_create_account("repeat-visitor", clock)
    assert first.account_id == second.account_id
    assert second.version == 1


def test_validate_config_warns_when_not_strict(caplog):
    cfg = Settings(DATABASE_URL=None, JWT_SECRET=None, ADMIN_KEY=None, STRIPE_SECRET_KEY=None)
    with caplog.at_level(logging.WARNING, logger="vivu"):
        assert validate_config(strict=False, settings_obj=cfg) is False
    assert any("JWT_SECRET" in r.getMessage() for r in caplog.records)


def test_validate_config_strict_raises():
    cfg = Settings(DATABASE_URL="sqlite://", JWT_SECRET="s", ADMIN_KEY=None, STRIPE_SECRET_KEY="sk")
    with pytest.raises(RuntimeError) as exc_info:
        validate_config(strict=True, settings_obj=cfg)
    assert "ADMIN_KEY" in str(exc_info.value)
    assert "JWT_SECRET" not in str(exc_info.value)


def test_production_rejects_header_auth():
    cfg = Settings(
        ENV="production",
        DATABASE_URL="postgresql://db/vivu",
        JWT_SECRET="s" * 32,
        ADMIN_KEY="k",
        STRIPE_SECRET_KEY="sk_live_x",
        STRIPE_WEBHOOK_SECRET="whsec_x",
        ALLOW_HEADER_AUTH=True,
    )
    assert config_problems(cfg) == ["ALLOW_HEADER_AUTH must be disabled in production"]
    assert config_problems(cfg.model_copy(update={"ALLOW_HEADER_AUTH": False})) == []
