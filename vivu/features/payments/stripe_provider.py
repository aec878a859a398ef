"""
Stripe payment provider implementation.

Implements PaymentProvider using Stripe Checkout in one-off `payment` mode:
each order buys a fixed subscription window, renewals are new orders.
"""
import os
from typing import Dict, Any, Optional
import stripe

from vivu.core.config import settings
from vivu.core.errors import PaymentProviderError
from vivu.features.payments.provider import (
    CheckoutSession,
    PaymentVerification,
    PaymentWebhookError,
    PaymentWebhookResult,
)
from vivu.models.payment import PaymentOrder, PaymentPlan


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Item lookup that works for both dicts and StripeObjects."""
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


PAID_EVENT_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}


class StripeProvider:
    """Stripe implementation of PaymentProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET or os.getenv("STRIPE_WEBHOOK_SECRET")

        if not self.secret_key:
            raise PaymentProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_checkout_session(
        self,
        order: PaymentOrder,
        plan: PaymentPlan,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """Create Stripe checkout session for a single payment."""
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": order.currency,
                        "product_data": {"name": plan.name, "description": plan.description},
                        "unit_amount": order.amount,
                    },
                    "quantity": 1,
                }
            ],
            "client_reference_id": order.order_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {
                "order_id": order.order_id,
                "account_id": order.account_id,
                "plan_kind": order.plan_kind.value,
            },
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(**params)
            return CheckoutSession(session_id=session.id, url=session.url)
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe checkout session creation failed: {e}")

    def verify_session(self, session_id: str) -> PaymentVerification:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            raise PaymentProviderError(f"Stripe session lookup failed: {e}")
        return PaymentVerification(
            session_id=session_id,
            paid=_get(session, "payment_status") == "paid",
            status=_get(session, "status"),
            amount=_get(session, "amount_total"),
        )

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookResult:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise PaymentWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise PaymentWebhookError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise PaymentWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise PaymentWebhookError(f"Invalid signature: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> PaymentWebhookResult:
        """Parse Stripe event into normalized PaymentWebhookResult."""
        event_type = event["type"]
        data = _get(_get(event, "data", {}), "object", {})
        metadata = dict(_get(data, "metadata", {}))

        session_id = None
        order_id = None
        paid = False
        if event_type.startswith("checkout.session."):
            session_id = _get(data, "id")
            order_id = metadata.get("order_id") or _get(data, "client_reference_id")
            paid = event_type in PAID_EVENT_TYPES and _get(data, "payment_status") == "paid"

        return PaymentWebhookResult(
            event_id=event["id"],
            event_type=event_type,
            session_id=session_id,
            order_id=order_id,
            paid=paid,
            metadata=metadata,
        )
