"""
vivu/features/entitlements/engine.py

Subscription state transitions for the metered feature (AI travel search).

Everything here is pure: functions take account / promo snapshots plus an
explicit `now` and return new snapshots. Persistence, retries and logging
live in the service modules.

Rules:
- An unconsumed trial always grants access, regardless of elapsed time.
- `expired` never grants access.
- Otherwise access requires `is_active` and `now < end_date`; lifetime
  subscriptions skip the end_date comparison.
- Promo codes stack onto any running window; payments reset the window.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from vivu.core.clock import ensure_utc
from vivu.core.errors import PromoAlreadyUsedError, PromoNotRedeemableError
from vivu.models.account import (
    LIFETIME_END,
    Account,
    RedeemedPromoCode,
    Subscription,
    SubscriptionKind,
)
from vivu.models.promo_code import PromoCode, PromoKind, PromoRedeemer


@dataclass(frozen=True)
class RedemptionOutcome:
    account: Account
    promo: PromoCode


@dataclass(frozen=True)
class SubscriptionStatus:
    """Display classification of an account at a point in time."""
    is_subscription_active: bool
    can_use_trial: bool
    state: str  # trial_available | trial_used | active | lifetime | expired
    remaining_days: Optional[int]


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's length."""
    return value + relativedelta(months=months)


def can_use_trial(account: Account) -> bool:
    return (
        account.subscription.kind == SubscriptionKind.TRIAL
        and not account.usage.trial_consumed
    )


def has_active_window(subscription: Subscription, now: datetime) -> bool:
    """True when the stored window is flagged active and has not ended."""
    if not subscription.is_active:
        return False
    if subscription.kind == SubscriptionKind.LIFETIME:
        return True
    return ensure_utc(now) < ensure_utc(subscription.end_date)


def has_active_paid_window(subscription: Subscription, now: datetime) -> bool:
    """Active window on a paid kind; trial and expired windows never count."""
    if subscription.kind in (SubscriptionKind.TRIAL, SubscriptionKind.EXPIRED):
        return False
    return has_active_window(subscription, now)


def is_entitled(account: Account, now: datetime) -> bool:
    """May the account use the metered feature at `now`?"""
    if can_use_trial(account):
        return True
    if account.subscription.kind == SubscriptionKind.EXPIRED:
        return False
    if account.subscription.kind == SubscriptionKind.TRIAL:
        # Consumed trial; the stored end_date is display-only
        return False
    return has_active_window(account.subscription, now)


def consume_trial(account: Account, now: datetime) -> Account:
    """Spend the one-shot trial. The caller has already checked entitlement."""
    usage = account.usage.model_copy(update={
        "trial_consumed": True,
        "search_count": account.usage.search_count + 1,
        "last_search_at": ensure_utc(now),
    })
    return account.model_copy(update={"usage": usage})


def record_usage(account: Account, now: datetime) -> Account:
    """Count one metered use on the paid path. Not idempotent."""
    usage = account.usage.model_copy(update={
        "search_count": account.usage.search_count + 1,
        "last_search_at": ensure_utc(now),
    })
    return account.model_copy(update={"usage": usage})


def is_redeemable(promo: PromoCode, now: datetime) -> bool:
    if not promo.active:
        return False
    if promo.max_redemptions is not None and promo.redemption_count >= promo.max_redemptions:
        return False
    if promo.expires_at is not None and ensure_utc(now) >= ensure_utc(promo.expires_at):
        return False
    return True


def check_redemption(account: Account, promo: PromoCode, now: datetime) -> None:
    """Raise the first failing redemption check (after lookup succeeded)."""
    if not is_redeemable(promo, now):
        raise PromoNotRedeemableError(f"Promo code {promo.code} is no longer redeemable")
    if promo.has_redeemed(account.account_id):
        raise PromoAlreadyUsedError(f"Promo code {promo.code} was already used by this account")


def promo_window(subscription: Subscription, promo: PromoCode, now: datetime) -> Subscription:
    """
    New subscription granted by `promo`.

    Stacks onto any window still running at `now`, the trial window
    included. Otherwise the new window starts at `now`.
    """
    now = ensure_utc(now)
    if has_active_window(subscription, now):
        base_start = ensure_utc(subscription.end_date)
    else:
        base_start = now

    if promo.kind == PromoKind.LIFETIME:
        kind = SubscriptionKind.LIFETIME
        end_date = LIFETIME_END
    else:
        kind = SubscriptionKind(promo.kind.value)
        end_date = add_months(base_start, promo.duration_months)

    return Subscription(
        kind=kind,
        start_date=base_start,
        end_date=end_date,
        is_active=True,
        auto_renew=False,
    )


def apply_promo(account: Account, promo: PromoCode, now: datetime) -> RedemptionOutcome:
    """Validate and apply a redemption to both snapshots."""
    now = ensure_utc(now)
    check_redemption(account, promo, now)

    updated_account = account.model_copy(update={
        "subscription": promo_window(account.subscription, promo, now),
        "redeemed_promo_codes": account.redeemed_promo_codes
        + (RedeemedPromoCode(code=promo.code, redeemed_at=now),),
    })
    updated_promo = promo.model_copy(update={
        "redemption_count": promo.redemption_count + 1,
        "redeemed_by": promo.redeemed_by + (PromoRedeemer(account_id=account.account_id, redeemed_at=now),),
    })
    return RedemptionOutcome(account=updated_account, promo=updated_promo)


def activate_paid_subscription(
    account: Account,
    plan_kind: SubscriptionKind,
    duration_months: int,
    now: datetime,
    auto_renew: Optional[bool] = None,
) -> Account:
    """Start a paid window at `now`. Does not stack onto an unexpired window."""
    now = ensure_utc(now)
    if plan_kind == SubscriptionKind.LIFETIME:
        end_date = LIFETIME_END
    else:
        end_date = add_months(now, duration_months)

    subscription = Subscription(
        kind=plan_kind,
        start_date=now,
        end_date=end_date,
        is_active=True,
        auto_renew=account.subscription.auto_renew if auto_renew is None else auto_renew,
    )
    return account.model_copy(update={"subscription": subscription})


def subscription_status(account: Account, now: datetime) -> SubscriptionStatus:
    now = ensure_utc(now)
    subscription = account.subscription
    active = is_entitled(account, now)

    if can_use_trial(account):
        state = "trial_available"
    elif subscription.kind == SubscriptionKind.TRIAL:
        state = "trial_used"
    elif subscription.kind == SubscriptionKind.LIFETIME and active:
        state = "lifetime"
    elif active:
        state = "active"
    else:
        state = "expired"

    remaining_days = None
    if state == "active":
        remaining_days = max(0, (ensure_utc(subscription.end_date) - now).days)

    return SubscriptionStatus(
        is_subscription_active=active,
        can_use_trial=can_use_trial(account),
        state=state,
        remaining_days=remaining_days,
    )
