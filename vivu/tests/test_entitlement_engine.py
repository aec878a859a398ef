"""
Entitlement engine rules (pure functions, no database).

Covers the one-shot trial, window boundaries, lifetime handling, promo
stacking and the payment reset.
"""
from datetime import datetime, timedelta, timezone

import pytest

from vivu.core.errors import PromoAlreadyUsedError, PromoNotRedeemableError
from vivu.features.entitlements.engine import (
    activate_paid_subscription,
    add_months,
    apply_promo,
    can_use_trial,
    consume_trial,
    has_active_paid_window,
    is_entitled,
    is_redeemable,
    promo_window,
    record_usage,
    subscription_status,
)
from vivu.models.account import LIFETIME_END, Account, Subscription, SubscriptionKind, Usage
from vivu.models.promo_code import PromoCode, PromoKind, PromoRedeemer


NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def _account(kind=SubscriptionKind.TRIAL, end=None, start=None, is_active=True, trial_consumed=False):
    return Account(
        account_id="acct-1",
        subscription=Subscription(
            kind=kind,
            start_date=start or NOW - timedelta(days=1),
            end_date=end or NOW + timedelta(hours=24),
            is_active=is_active,
        ),
        usage=Usage(trial_consumed=trial_consumed),
    )


def _promo(kind=PromoKind.MONTHLY, months=1, **kwargs):
    return PromoCode(code=kwargs.pop("code", "SPRING"), kind=kind, duration_months=months, **kwargs)


# --- trial ---------------------------------------------------------------

def test_unconsumed_trial_is_entitled_even_after_display_end():
    account = _account(end=NOW - timedelta(days=30))
    assert can_use_trial(account)
    assert is_entitled(account, NOW)


def test_trial_is_one_shot():
    account = consume_trial(_account(), NOW)
    assert account.usage.trial_consumed is True
    assert account.usage.search_count == 1
    assert account.usage.last_search_at == NOW
    assert not can_use_trial(account)
    # Display end_date is still in the future but grants nothing
    assert not is_entitled(account, NOW)


def test_consume_trial_returns_copy():
    before = _account()
    consume_trial(before, NOW)
    assert before.usage.trial_consumed is False


# --- windows -------------------------------------------------------------

def test_paid_window_end_is_exclusive():
    end = NOW + timedelta(days=3)
    account = _account(kind=SubscriptionKind.MONTHLY, end=end)
    assert is_entitled(account, end - timedelta(seconds=1))
    assert not is_entitled(account, end)
    assert not is_entitled(account, end + timedelta(seconds=1))


def test_inactive_flag_denies_even_inside_window():
    account = _account(kind=SubscriptionKind.YEARLY, end=NOW + timedelta(days=100), is_active=False)
    assert not is_entitled(account, NOW)


def test_expired_kind_never_entitled():
    account = _account(kind=SubscriptionKind.EXPIRED, end=NOW + timedelta(days=100))
    assert not is_entitled(account, NOW)


def test_lifetime_ignores_end_date():
    account = _account(kind=SubscriptionKind.LIFETIME, end=LIFETIME_END)
    assert is_entitled(account, datetime(2150, 6, 1, tzinfo=timezone.utc))


def test_lifetime_respects_active_flag():
    account = _account(kind=SubscriptionKind.LIFETIME, end=LIFETIME_END, is_active=False)
    assert not is_entitled(account, NOW)


def test_trial_window_is_not_a_paid_window():
    assert not has_active_paid_window(_account().subscription, NOW)


def test_record_usage_counts_without_touching_trial():
    account = _account(kind=SubscriptionKind.MONTHLY, end=NOW + timedelta(days=10))
    once = record_usage(account, NOW)
    twice = record_usage(once, NOW + timedelta(minutes=5))
    assert twice.usage.search_count == 2
    assert twice.usage.last_search_at == NOW + timedelta(minutes=5)
    assert twice.usage.trial_consumed is False


# --- month arithmetic ----------------------------------------------------

@pytest.mark.parametrize(
    "start, months, expected",
    [
        (datetime(2025, 1, 31, tzinfo=timezone.utc), 1, datetime(2025, 2, 28, tzinfo=timezone.utc)),
        (datetime(2024, 1, 31, tzinfo=timezone.utc), 1, datetime(2024, 2, 29, tzinfo=timezone.utc)),
        (datetime(2025, 11, 15, 8, 30, tzinfo=timezone.utc), 3, datetime(2026, 2, 15, 8, 30, tzinfo=timezone.utc)),
        (datetime(2025, 1, 15, tzinfo=timezone.utc), 12, datetime(2026, 1, 15, tzinfo=timezone.utc)),
    ],
)
def test_add_months_uses_calendar_months(start, months, expected):
    assert add_months(start, months) == expected


# --- promo windows -------------------------------------------------------

def test_promo_stacks_on_running_trial_window():
    trial_end = NOW + timedelta(hours=24)
    sub = promo_window(_account(end=trial_end).subscription, _promo(), NOW)
    assert sub.kind == SubscriptionKind.MONTHLY
    assert sub.start_date == trial_end
    assert sub.end_date == datetime(2025, 2, 16, 12, 0, tzinfo=timezone.utc)
    assert sub.is_active is True
    assert sub.auto_renew is False


def test_promo_on_consumed_trial_still_stacks():
    account = consume_trial(_account(), NOW)
    sub = promo_window(account.subscription, _promo(), NOW)
    assert sub.start_date == NOW + timedelta(hours=24)


def test_promo_after_trial_display_end_starts_now():
    sub = promo_window(_account(end=NOW - timedelta(hours=1)).subscription, _promo(), NOW)
    assert sub.start_date == NOW
    assert sub.end_date == datetime(2025, 2, 15, 12, 0, tzinfo=timezone.utc)


def test_promo_on_inactive_window_starts_now():
    account = _account(kind=SubscriptionKind.MONTHLY, end=NOW + timedelta(days=10), is_active=False)
    sub = promo_window(account.subscription, _promo(), NOW)
    assert sub.start_date == NOW


def test_promo_stacks_on_active_paid_window():
    current_end = datetime(2025, 2, 10, tzinfo=timezone.utc)
    account = _account(kind=SubscriptionKind.MONTHLY, end=current_end)
    sub = promo_window(account.subscription, _promo(kind=PromoKind.QUARTERLY, months=3), NOW)
    assert sub.kind == SubscriptionKind.QUARTERLY
    assert sub.start_date == current_end
    assert sub.end_date == datetime(2025, 5, 10, tzinfo=timezone.utc)


def test_promo_after_lapsed_window_starts_now():
    account = _account(kind=SubscriptionKind.MONTHLY, end=NOW - timedelta(days=2))
    sub = promo_window(account.subscription, _promo(), NOW)
    assert sub.start_date == NOW


def test_lifetime_promo_uses_sentinel():
    sub = promo_window(_account().subscription, _promo(kind=PromoKind.LIFETIME, months=0), NOW)
    assert sub.kind == SubscriptionKind.LIFETIME
    assert sub.end_date == LIFETIME_END


def test_monthly_promo_on_lifetime_stacks_from_sentinel():
    account = _account(kind=SubscriptionKind.LIFETIME, end=LIFETIME_END)
    sub = promo_window(account.subscription, _promo(), NOW)
    assert sub.kind == SubscriptionKind.MONTHLY
    assert sub.start_date == LIFETIME_END
    assert sub.end_date == datetime(2100, 1, 31, tzinfo=timezone.utc)


# --- redeemability -------------------------------------------------------

def test_promo_expiry_boundary():
    promo = _promo(expires_at=NOW + timedelta(seconds=1))
    assert is_redeemable(promo, NOW)
    assert not is_redeemable(promo, NOW + timedelta(seconds=1))


def test_promo_cap_and_active_flag():
    assert not is_redeemable(_promo(max_redemptions=2, redemption_count=2), NOW)
    assert is_redeemable(_promo(max_redemptions=2, redemption_count=1), NOW)
    assert is_redeemable(_promo(max_redemptions=None, redemption_count=10_000), NOW)
    assert not is_redeemable(_promo(active=False), NOW)


def test_not_redeemable_reported_before_already_used():
    redeemer = PromoRedeemer(account_id="acct-1", redeemed_at=NOW - timedelta(days=1))
    promo = _promo(max_redemptions=1, redemption_count=1, redeemed_by=(redeemer,))
    with pytest.raises(PromoNotRedeemableError):
        apply_promo(_account(), promo, NOW)


def test_already_used_by_same_account():
    redeemer = PromoRedeemer(account_id="acct-1", redeemed_at=NOW - timedelta(days=1))
    promo = _promo(redemption_count=1, redeemed_by=(redeemer,))
    with pytest.raises(PromoAlreadyUsedError):
        apply_promo(_account(), promo, NOW)


def test_apply_promo_appends_audit_trails():
    account = _account()
    promo = _promo(max_redemptions=5, redemption_count=2)
    outcome = apply_promo(account, promo, NOW)

    assert [r.code for r in outcome.account.redeemed_promo_codes] == ["SPRING"]
    assert outcome.account.redeemed_promo_codes[0].redeemed_at == NOW
    assert outcome.promo.redemption_count == 3
    assert outcome.promo.has_redeemed("acct-1")
    # Inputs untouched
    assert account.redeemed_promo_codes == ()
    assert promo.redemption_count == 2


def test_promo_does_not_consume_trial():
    outcome = apply_promo(_account(), _promo(), NOW)
    assert outcome.account.usage.trial_consumed is False
    assert not can_use_trial(outcome.account)
    assert is_entitled(outcome.account, NOW)


# --- payments ------------------------------------------------------------

def test_payment_resets_window_instead_of_stacking():
    account = _account(kind=SubscriptionKind.MONTHLY, end=datetime(2025, 3, 1, tzinfo=timezone.utc))
    paid = activate_paid_subscription(account, SubscriptionKind.YEARLY, 12, NOW)
    assert paid.subscription.kind == SubscriptionKind.YEARLY
    assert paid.subscription.start_date == NOW
    assert paid.subscription.end_date == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_payment_keeps_auto_renew_unless_overridden():
    account = _account(kind=SubscriptionKind.MONTHLY, end=NOW + timedelta(days=1))
    assert activate_paid_subscription(account, SubscriptionKind.MONTHLY, 1, NOW).subscription.auto_renew is False
    assert activate_paid_subscription(account, SubscriptionKind.MONTHLY, 1, NOW, auto_renew=True).subscription.auto_renew is True


# --- status --------------------------------------------------------------

def test_status_states():
    assert subscription_status(_account(), NOW).state == "trial_available"
    assert subscription_status(_account(trial_consumed=True), NOW).state == "trial_used"
    assert subscription_status(_account(kind=SubscriptionKind.LIFETIME, end=LIFETIME_END), NOW).state == "lifetime"
    assert subscription_status(_account(kind=SubscriptionKind.MONTHLY, end=NOW - timedelta(seconds=1)), NOW).state == "expired"

    active = subscription_status(_account(kind=SubscriptionKind.MONTHLY, end=NOW + timedelta(days=10, hours=3)), NOW)
    assert active.state == "active"
    assert active.is_subscription_active is True
    assert active.can_use_trial is False
    assert active.remaining_days == 10
