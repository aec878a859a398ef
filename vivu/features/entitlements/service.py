"""
vivu/features/entitlements/service.py

Gate for the metered feature (AI travel search).

Handles:
- Entitlement check against the stored account
- Trial consumption or paid-usage recording, saved with a version check
- Retry from a fresh read on concurrent writes to the same account
"""

from dataclasses import dataclass
from typing import Optional
import logging

from vivu.core.clock import Clock, system_clock
from vivu.core.config import settings
from vivu.core.errors import ConcurrencyConflictError, SubscriptionRequiredError
from vivu.features.accounts.store import load_account, save_account
from vivu.features.entitlements.engine import (
    SubscriptionStatus,
    can_use_trial,
    consume_trial,
    is_entitled,
    record_usage,
    subscription_status,
)
from vivu.models.account import Account


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchGrant:
    account: Account
    via_trial: bool


def _authorize_once(account_id: str, clock: Clock) -> SearchGrant:
    account = load_account(account_id)
    now = clock.now()

    if not is_entitled(account, now):
        logger.warning(
            "[entitlement] DENIED",
            extra={
                "account_id": account_id,
                "kind": account.subscription.kind.value,
                "trial_consumed": account.usage.trial_consumed,
            },
        )
        raise SubscriptionRequiredError(
            "An active subscription is required to use travel search",
        )

    via_trial = can_use_trial(account)
    updated = consume_trial(account, now) if via_trial else record_usage(account, now)
    saved = save_account(updated)
    logger.info(
        "[entitlement] ALLOWED",
        extra={
            "account_id": account_id,
            "kind": saved.subscription.kind.value,
            "via_trial": via_trial,
            "search_count": saved.usage.search_count,
        },
    )
    return SearchGrant(account=saved, via_trial=via_trial)


def authorize_search(
    account_id: str,
    *,
    clock: Clock = system_clock,
    max_retries: Optional[int] = None,
) -> SearchGrant:
    """
    Check entitlement and record one metered use.

    Raises SubscriptionRequiredError when not entitled (nothing is written),
    ConcurrencyConflictError when retries are exhausted.
    """
    retries = settings.REDEMPTION_MAX_RETRIES if max_retries is None else max_retries
    attempt = 0
    while True:
        try:
            return _authorize_once(account_id, clock)
        except ConcurrencyConflictError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.info("[entitlement] conflict, retrying", extra={"account_id": account_id, "attempt": attempt})


def get_subscription_status(account_id: str, *, clock: Clock = system_clock) -> SubscriptionStatus:
    return subscription_status(load_account(account_id), clock.now())
