"""
Payment service orchestrator.

Coordinates:
- Plan catalog
- Pending order creation + provider checkout
- Payment confirmation -> paid subscription activation
- Webhook processing (idempotent per provider event)

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from vivu.core.clock import Clock, ensure_utc, system_clock
from vivu.core.config import settings
from vivu.core.database import get_db_session, payment_orders, payment_events
from vivu.core.errors import (
    BillingDisabledError,
    ConcurrencyConflictError,
    NotFoundError,
    PermissionError,
    ValidationError,
)
from vivu.core.logging import log_event
from vivu.features.accounts.store import load_account, save_account
from vivu.features.entitlements.engine import activate_paid_subscription
from vivu.features.payments.provider import PaymentProvider, PaymentWebhookError, PaymentWebhookResult
from vivu.features.payments.stripe_provider import StripeProvider
from vivu.models.account import Account, SubscriptionKind
from vivu.models.payment import PaymentOrder, PaymentPlan, PaymentStatus


logger = logging.getLogger("vivu")

PLANS: Dict[SubscriptionKind, PaymentPlan] = {
    SubscriptionKind.MONTHLY: PaymentPlan(
        kind=SubscriptionKind.MONTHLY,
        name="Monthly plan",
        price=25000,
        duration_months=1,
        description="Unlimited travel search for 1 month",
    ),
    SubscriptionKind.YEARLY: PaymentPlan(
        kind=SubscriptionKind.YEARLY,
        name="Yearly plan",
        price=250000,
        duration_months=12,
        description="Unlimited travel search for 1 year (2 months free)",
    ),
}


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[PaymentProvider]:
    """Get payment provider if billing is enabled."""
    if not billing_enabled():
        return None
    return StripeProvider()


def _require_provider() -> PaymentProvider:
    provider = get_provider()
    if provider is None:
        raise BillingDisabledError("Payments are not configured")
    return provider


def list_plans() -> List[PaymentPlan]:
    return list(PLANS.values())


def get_plan(plan_kind) -> PaymentPlan:
    try:
        return PLANS[SubscriptionKind(plan_kind)]
    except (KeyError, ValueError):
        raise ValidationError(f"Invalid plan type: {plan_kind}", code="invalid_plan")


def _row_to_order(row) -> PaymentOrder:
    return PaymentOrder(
        order_id=row.order_id,
        account_id=row.account_id,
        plan_kind=SubscriptionKind(row.plan_kind),
        duration_months=row.duration_months,
        amount=row.amount,
        currency=row.currency,
        status=PaymentStatus(row.status),
        provider_session_id=row.provider_session_id,
        created_at=ensure_utc(row.created_at),
        completed_at=ensure_utc(row.completed_at),
    )


def get_order(order_id: str) -> PaymentOrder:
    with get_db_session() as session:
        row = session.execute(select(payment_orders).where(payment_orders.c.order_id == order_id)).first()
    if not row:
        raise NotFoundError(f"Payment order {order_id} not found", code="order_not_found")
    return _row_to_order(row)


def payment_history(account_id: str) -> List[PaymentOrder]:
    with get_db_session() as session:
        rows = session.execute(
            select(payment_orders)
            .where(payment_orders.c.account_id == account_id)
            .order_by(payment_orders.c.created_at.desc())
        ).all()
    return [_row_to_order(row) for row in rows]


def create_payment(
    account_id: str,
    plan_kind,
    *,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    clock: Clock = system_clock,
) -> Tuple[PaymentOrder, str]:
    """
    Create a pending order and a provider checkout for it.

    Returns:
        (order, checkout_url)

    Raises:
        BillingDisabledError: Stripe not configured
        ValidationError: unknown plan
        PaymentProviderError: checkout creation failed
    """
    provider = _require_provider()
    plan = get_plan(plan_kind)
    account = load_account(account_id)
    now = clock.now()

    order = PaymentOrder(
        order_id=f"SUB_{uuid4().hex[:16]}",
        account_id=account_id,
        plan_kind=plan.kind,
        duration_months=plan.duration_months,
        amount=plan.price,
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.PENDING,
        created_at=now,
    )
    with get_db_session() as session:
        session.execute(
            insert(payment_orders).values(
                order_id=order.order_id,
                account_id=order.account_id,
                plan_kind=order.plan_kind.value,
                duration_months=order.duration_months,
                amount=order.amount,
                currency=order.currency,
                status=order.status.value,
                created_at=order.created_at,
            )
        )

    checkout = provider.create_checkout_session(
        order,
        plan,
        success_url=success_url or f"{settings.CLIENT_URL}/payment/success",
        cancel_url=cancel_url or f"{settings.CLIENT_URL}/payment/cancel",
        customer_email=account.email,
    )
    with get_db_session() as session:
        session.execute(
            update(payment_orders)
            .where(payment_orders.c.order_id == order.order_id)
            .values(provider_session_id=checkout.session_id)
        )
    logger.info(
        "[payment] order created",
        extra={"account_id": account_id, "order_id": order.order_id, "kind": plan.kind.value},
    )
    return order.model_copy(update={"provider_session_id": checkout.session_id}), checkout.url


def _mark_order(order_id: str, *, from_status: PaymentStatus, to_status: PaymentStatus, completed_at=None) -> bool:
    with get_db_session() as session:
        result = session.execute(
            update(payment_orders)
            .where(payment_orders.c.order_id == order_id)
            .where(payment_orders.c.status == from_status.value)
            .values(status=to_status.value, completed_at=completed_at)
        )
        return result.rowcount == 1


def complete_order(order_id: str, *, clock: Clock = system_clock, max_retries: Optional[int] = None) -> Account:
    """
    Flip a pending order to completed and activate its plan on the account.

    Idempotent: an already-completed order returns the current account
    untouched. If activation cannot be saved the order goes back to pending.
    """
    order = get_order(order_id)
    now = clock.now()
    if not _mark_order(order_id, from_status=PaymentStatus.PENDING, to_status=PaymentStatus.COMPLETED, completed_at=now):
        current = get_order(order_id)
        if current.status == PaymentStatus.COMPLETED:
            return load_account(order.account_id)
        raise ValidationError(f"Payment order {order_id} is {current.status.value}", code="order_not_pending")

    retries = settings.REDEMPTION_MAX_RETRIES if max_retries is None else max_retries
    attempt = 0
    try:
        while True:
            account = load_account(order.account_id)
            updated = activate_paid_subscription(account, order.plan_kind, order.duration_months, now)
            try:
                saved = save_account(updated)
                break
            except ConcurrencyConflictError:
                if attempt >= retries:
                    raise
                attempt += 1
    except Exception:
        _mark_order(order_id, from_status=PaymentStatus.COMPLETED, to_status=PaymentStatus.PENDING)
        logger.error("[payment] activation failed, order reopened", extra={"order_id": order_id})
        raise

    logger.info(
        "[payment] subscription activated",
        extra={
            "account_id": order.account_id,
            "order_id": order_id,
            "kind": order.plan_kind.value,
            "end_date": saved.subscription.end_date.isoformat(),
        },
    )
    return saved


def confirm_payment(account_id: str, order_id: str, *, clock: Clock = system_clock) -> Account:
    """Verify the order's checkout with the provider and activate when paid."""
    provider = _require_provider()
    order = get_order(order_id)
    if order.account_id != account_id:
        raise PermissionError("Payment order belongs to another account")
    if order.status == PaymentStatus.COMPLETED:
        return load_account(account_id)
    if not order.provider_session_id:
        raise ValidationError("Payment order has no checkout session", code="order_not_started")

    verification = provider.verify_session(order.provider_session_id)
    if not verification.paid:
        raise ValidationError(
            f"Payment not completed (status: {verification.status})",
            code="payment_not_completed",
        )
    return complete_order(order_id, clock=clock)


def process_webhook_event(headers: Dict[str, str], body: bytes, *, clock: Clock = system_clock) -> PaymentWebhookResult:
    """
    Process payment webhook event (idempotent).

    1. Verify signature
    2. Skip events already processed (failed ones are retried on redelivery)
    3. Complete the referenced order when paid
    4. Mark as processed (or store the error and re-raise)
    """
    provider = _require_provider()
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()
    log_event(
        "info",
        "payment.webhook",
        extra={"event_id": result.event_id, "event_type": result.event_type, "order_id": result.order_id, "paid": result.paid},
    )

    try:
        with get_db_session() as session:
            existing = session.execute(
                select(payment_events.c.processed).where(payment_events.c.provider_event_id == result.event_id)
            ).fetchone()
            if existing and existing.processed:
                return result
            if not existing:
                session.execute(
                    insert(payment_events).values(
                        provider_event_id=result.event_id,
                        event_type=result.event_type,
                        payload_hash=payload_hash,
                        processed=False,
                    )
                )
    except IntegrityError:
        # Race condition: another delivery already inserted this event
        return result

    try:
        if result.paid:
            if not result.order_id:
                raise PaymentWebhookError(f"Paid event {result.event_id} carries no order_id")
            complete_order(result.order_id, clock=clock)

        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.provider_event_id == result.event_id)
                .values(processed=True)
            )
    except Exception as e:
        with get_db_session() as session:
            session.execute(
                update(payment_events)
                .where(payment_events.c.provider_event_id == result.event_id)
                .values(error=str(e))
            )
        raise

    return result
