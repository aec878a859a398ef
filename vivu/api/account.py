"""
Account API routes.

- POST /v1/account:              register (starts the one-shot trial)
- POST /v1/account/login:        email + password, returns a bearer token
- POST /v1/account/refresh:      new token for a still-valid bearer token
- GET  /v1/account/me:           profile, subscription, usage and status
- GET  /v1/account/subscription: entitlement status only
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from vivu.core.auth import get_current_account_id, issue_jwt, require_bearer_account_id
from vivu.core.clock import Clock, get_clock
from vivu.core.config import settings
from vivu.features.accounts.service import authenticate, create_account
from vivu.features.accounts.store import load_account
from vivu.features.entitlements.engine import subscription_status
from vivu.features.entitlements.service import get_subscription_status
from vivu.models.account import Account


router = APIRouter(prefix="/v1/account", tags=["account"])


class RegisterRequest(BaseModel):
    email: str
    display_name: Optional[str] = None
    password: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip()


class LoginRequest(BaseModel):
    email: str
    password: str


def serialize_account(account: Account, clock: Clock) -> Dict[str, Any]:
    status = subscription_status(account, clock.now())
    return {
        "account_id": account.account_id,
        "email": account.email,
        "display_name": account.display_name,
        "role": account.role,
        "subscription": account.subscription.model_dump(mode="json"),
        "usage": account.usage.model_dump(mode="json"),
        "redeemed_promo_codes": [p.model_dump(mode="json") for p in account.redeemed_promo_codes],
        "is_subscription_active": status.is_subscription_active,
        "can_use_trial": status.can_use_trial,
        "state": status.state,
        "remaining_days": status.remaining_days,
    }


def _token_payload(account_id: str) -> Dict[str, Any]:
    return {
        "token": issue_jwt(account_id),
        "token_type": "bearer",
        "expires_in": settings.JWT_EXPIRES_SECONDS,
    }


@router.post("", status_code=201)
async def register(body: RegisterRequest, clock: Clock = Depends(get_clock)):
    account = create_account(
        email=body.email,
        display_name=body.display_name,
        password=body.password,
        clock=clock,
    )
    response = {"account": serialize_account(account, clock)}
    if body.password is not None:
        response.update(_token_payload(account.account_id))
    return response


@router.post("/login")
async def login(body: LoginRequest, clock: Clock = Depends(get_clock)):
    """
    Errors:
        401: invalid_credentials (unknown email and wrong password alike)
        503: auth_disabled when no JWT_SECRET is configured
    """
    account = authenticate(body.email, body.password)
    return {"account": serialize_account(account, clock), **_token_payload(account.account_id)}


@router.post("/refresh")
async def refresh(account_id: str = Depends(require_bearer_account_id)):
    load_account(account_id)
    return _token_payload(account_id)


@router.get("/me")
async def me(account_id: str = Depends(get_current_account_id), clock: Clock = Depends(get_clock)):
    return {"account": serialize_account(load_account(account_id), clock)}


@router.get("/subscription")
async def subscription(account_id: str = Depends(get_current_account_id), clock: Clock = Depends(get_clock)):
    status = get_subscription_status(account_id, clock=clock)
    return {
        "is_subscription_active": status.is_subscription_active,
        "can_use_trial": status.can_use_trial,
        "state": status.state,
        "remaining_days": status.remaining_days,
    }
