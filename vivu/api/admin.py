"""
Admin API routes.

All routes require X-Admin-Key or a JWT for an admin-role account.

- POST   /v1/admin/promo:                   create a code
- GET    /v1/admin/promo:                   list codes
- GET    /v1/admin/promo/{code}:            one code with its redeemers
- POST   /v1/admin/promo/{code}/deactivate: stop further redemptions
- DELETE /v1/admin/promo/{code}:            remove a code and its ledger
- GET    /v1/admin/stats/subscriptions:     dashboard counters
- GET    /v1/admin/stats/promo-code:        promo usage summary and top codes
- GET    /v1/admin/users/subscribers:       paid accounts, filter by kind and status
- GET    /v1/admin/users/promo-users:       accounts that redeemed a code
- GET    /v1/admin/users/{account_id}:      one account
- PUT    /v1/admin/users/{account_id}:      override role and subscription
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from vivu.core.auth import AdminActor, require_admin
from vivu.core.clock import Clock, get_clock
from vivu.features.accounts.service import admin_update_account
from vivu.features.accounts.store import load_account
from vivu.features.admin.stats import (
    account_summary,
    list_promo_users,
    list_subscribers,
    promo_code_stats,
    subscription_stats,
)
from vivu.features.promos.service import (
    create_promo_code,
    deactivate_promo_code,
    delete_promo_code,
    get_promo_code,
    list_promo_codes,
)
from vivu.models.account import SubscriptionKind
from vivu.models.promo_code import PromoCode, PromoKind


logger = logging.getLogger("vivu")

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class CreatePromoRequest(BaseModel):
    code: str
    kind: PromoKind
    duration_months: int = 1
    max_redemptions: Optional[int] = 1  # null = unlimited
    expires_at: Optional[datetime] = None


def _promo_payload(promo: PromoCode, include_redeemers: bool = False) -> dict:
    payload = promo.model_dump(mode="json", exclude={"redeemed_by"})
    if include_redeemers:
        payload["redeemed_by"] = [r.model_dump(mode="json") for r in promo.redeemed_by]
    return payload


@router.post("/promo", status_code=201)
async def create_promo(
    body: CreatePromoRequest,
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    promo = create_promo_code(
        body.code,
        body.kind,
        body.duration_months,
        max_redemptions=body.max_redemptions,
        expires_at=body.expires_at,
        created_by=actor.actor_id,
        clock=clock,
    )
    return {"promo": _promo_payload(promo)}


@router.get("/promo")
async def list_promos(actor: AdminActor = Depends(require_admin)):
    return {"promos": [_promo_payload(p) for p in list_promo_codes()]}


@router.get("/promo/{code}")
async def get_promo(code: str, actor: AdminActor = Depends(require_admin)):
    return {"promo": _promo_payload(get_promo_code(code), include_redeemers=True)}


@router.post("/promo/{code}/deactivate")
async def deactivate_promo(code: str, actor: AdminActor = Depends(require_admin)):
    promo = deactivate_promo_code(code)
    logger.info("[admin] promo deactivated", extra={"code": promo.code, "account_id": actor.actor_id})
    return {"promo": _promo_payload(promo)}


@router.delete("/promo/{code}")
async def delete_promo(code: str, actor: AdminActor = Depends(require_admin)):
    delete_promo_code(code)
    logger.info("[admin] promo deleted", extra={"code": code, "account_id": actor.actor_id})
    return {"deleted": True}


@router.get("/stats/subscriptions")
async def stats(
    expiring_days: Optional[int] = None,
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    return subscription_stats(clock=clock, expiring_days=expiring_days)


class SubscriptionOverride(BaseModel):
    kind: Optional[SubscriptionKind] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    auto_renew: Optional[bool] = None


class UpdateAccountRequest(BaseModel):
    display_name: Optional[str] = None
    role: Optional[str] = None
    subscription: Optional[SubscriptionOverride] = None


@router.get("/stats/promo-code")
async def promo_stats(
    expiring_days: Optional[int] = None,
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    return promo_code_stats(clock=clock, expiring_days=expiring_days)


@router.get("/users/subscribers")
async def subscribers(
    kind: Optional[SubscriptionKind] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    return list_subscribers(kind=kind, status=status, page=page, limit=limit, clock=clock)


@router.get("/users/promo-users")
async def promo_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    return list_promo_users(page=page, limit=limit, clock=clock)


@router.get("/users/{account_id}")
async def get_user(
    account_id: str,
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    return {"account": account_summary(load_account(account_id), clock.now())}


@router.put("/users/{account_id}")
async def update_user(
    account_id: str,
    body: UpdateAccountRequest,
    actor: AdminActor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    """Override role, display name or subscription fields of one account."""
    account = admin_update_account(
        account_id,
        display_name=body.display_name,
        role=body.role,
        subscription=body.subscription.model_dump(exclude_none=True) if body.subscription else None,
    )
    return {"account": account_summary(account, clock.now())}
