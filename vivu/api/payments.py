"""
Payment API routes.

- GET  /v1/payments/plans:    Plan catalog
- POST /v1/payments/checkout: Create a pending order + checkout session
- POST /v1/payments/confirm:  Verify a checkout and activate the plan
- POST /v1/payments/webhook:  Handle Stripe webhooks
- GET  /v1/payments/history:  Caller's orders, newest first
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from vivu.api.account import serialize_account
from vivu.core.auth import get_current_account_id
from vivu.core.clock import Clock, get_clock
from vivu.features.payments.service import (
    billing_enabled,
    confirm_payment,
    create_payment,
    list_plans,
    payment_history,
    process_webhook_event,
)
from vivu.models.account import SubscriptionKind


router = APIRouter(prefix="/v1/payments", tags=["payments"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan_kind: SubscriptionKind
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    order_id: str
    amount: int
    currency: str
    url: str


class ConfirmRequest(BaseModel):
    order_id: str


@router.get("/plans")
async def plans():
    return {
        "enabled": billing_enabled(),
        "plans": [plan.model_dump(mode="json") for plan in list_plans()],
    }


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(body: CheckoutRequest, account_id: str = Depends(get_current_account_id), clock: Clock = Depends(get_clock)):
    """
    Errors:
        503: billing_disabled (STRIPE_SECRET_KEY not set)
        400: invalid_plan
        502: payment_provider_error
    """
    order, url = create_payment(
        account_id,
        body.plan_kind,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        clock=clock,
    )
    return {"order_id": order.order_id, "amount": order.amount, "currency": order.currency, "url": url}


@router.post("/confirm")
async def confirm(body: ConfirmRequest, account_id: str = Depends(get_current_account_id), clock: Clock = Depends(get_clock)):
    account = confirm_payment(account_id, body.order_id, clock=clock)
    return {"message": "Payment confirmed", "account": serialize_account(account, clock)}


@router.post("/webhook")
async def webhook(req: Request, clock: Clock = Depends(get_clock)):
    """
    Handle Stripe webhook events.

    Signature verification happens in the provider; duplicates are
    acknowledged without reprocessing.
    """
    body = await req.body()
    headers = {k.lower(): v for k, v in req.headers.items()}
    result = process_webhook_event(headers, body, clock=clock)
    return {"received": True, "event_id": result.event_id}


@router.get("/history")
async def history(account_id: str = Depends(get_current_account_id)):
    return {"orders": [order.model_dump(mode="json") for order in payment_history(account_id)]}
