"""
Payment provider protocol.

Defines the interface for payment providers (Stripe, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field

from vivu.core.errors import PaymentProviderError
from vivu.models.payment import PaymentOrder, PaymentPlan


@dataclass
class CheckoutSession:
    session_id: str
    url: str


@dataclass
class PaymentVerification:
    """Provider-side state of a checkout session."""
    session_id: str
    paid: bool
    status: Optional[str]
    amount: Optional[int] = None


@dataclass
class PaymentWebhookResult:
    """Result of processing a payment webhook."""
    event_id: str
    event_type: str
    session_id: Optional[str]
    order_id: Optional[str]
    paid: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - One-off checkout session creation for a pending order
    - Session verification (was it paid?)
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        order: PaymentOrder,
        plan: PaymentPlan,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a hosted checkout for `order`.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    def verify_session(self, session_id: str) -> PaymentVerification:
        """
        Fetch the provider's view of a checkout session.

        Raises:
            PaymentProviderError: If the session cannot be retrieved
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> PaymentWebhookResult:
        """
        Verify webhook signature and parse event.

        Raises:
            PaymentWebhookError: If signature invalid or parsing fails
        """
        ...


class PaymentWebhookError(PaymentProviderError):
    """Exception for webhook processing errors."""
    code = "payment_webhook_error"
    status_code = 400
