"""
Admin dashboard views: subscription and promo code statistics, plus the
subscriber and promo-user lists.

Counts are derived with the same entitlement rules the search gate uses,
so "active" here always matches what an account can actually do.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from vivu.core.clock import Clock, ensure_utc, system_clock
from vivu.core.config import settings
from vivu.core.errors import ValidationError
from vivu.features.accounts.store import list_accounts
from vivu.features.entitlements.engine import (
    has_active_paid_window,
    has_active_window,
    is_entitled,
    is_redeemable,
    subscription_status,
)
from vivu.features.promos.store import list_promos
from vivu.models.account import Account, SubscriptionKind
from vivu.models.promo_code import PromoCode, PromoKind


def subscription_stats(*, clock: Clock = system_clock, expiring_days: int = None) -> Dict[str, Any]:
    now = clock.now()
    horizon = now + timedelta(days=expiring_days or settings.EXPIRING_SOON_DAYS)

    by_kind = {kind.value: {"total": 0, "entitled": 0} for kind in SubscriptionKind}
    expiring_soon = []
    paid_active = 0
    total_searches = 0
    trial_consumed = 0

    accounts = list_accounts()
    for account in accounts:
        sub = account.subscription
        entitled = is_entitled(account, now)
        bucket = by_kind[sub.kind.value]
        bucket["total"] += 1
        if entitled:
            bucket["entitled"] += 1
        total_searches += account.usage.search_count
        if account.usage.trial_consumed:
            trial_consumed += 1

        if has_active_paid_window(sub, now):
            paid_active += 1
            if sub.kind != SubscriptionKind.LIFETIME and ensure_utc(sub.end_date) < horizon:
                expiring_soon.append({
                    "account_id": account.account_id,
                    "email": account.email,
                    "kind": sub.kind.value,
                    "end_date": ensure_utc(sub.end_date).isoformat(),
                })

    expiring_soon.sort(key=lambda item: item["end_date"])
    total = len(accounts)
    return {
        "total_accounts": total,
        "paid_active": paid_active,
        "subscription_rate": round(paid_active * 100 / total, 2) if total else 0,
        "trial_consumed": trial_consumed,
        "total_searches": total_searches,
        "by_kind": by_kind,
        "expiring_soon": expiring_soon,
        "computed_at": now.isoformat(),
    }


SUBSCRIBER_STATUSES = ("active", "expired")


def _page(items: List[Any], page: int, limit: int) -> Dict[str, Any]:
    total = len(items)
    start = (page - 1) * limit
    return {
        "items": items[start:start + limit],
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit if total else 0,
    }


def account_summary(account: Account, now) -> Dict[str, Any]:
    status = subscription_status(account, now)
    return {
        "account_id": account.account_id,
        "email": account.email,
        "display_name": account.display_name,
        "role": account.role,
        "subscription": account.subscription.model_dump(mode="json"),
        "state": status.state,
        "remaining_days": status.remaining_days,
        "search_count": account.usage.search_count,
        "redeemed_promo_codes": [p.model_dump(mode="json") for p in account.redeemed_promo_codes],
        "created_at": account.created_at.isoformat() if account.created_at else None,
    }


def list_subscribers(
    *,
    kind: Optional[SubscriptionKind] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    clock: Clock = system_clock,
) -> Dict[str, Any]:
    """
    Accounts past the trial, newest window first.

    `status="active"` keeps accounts entitled right now; `status="expired"`
    keeps accounts whose window is no longer running.
    """
    if status is not None and status not in SUBSCRIBER_STATUSES:
        raise ValidationError(f"Unknown status filter: {status!r}", code="invalid_status")
    now = clock.now()

    selected = []
    for account in list_accounts():
        sub = account.subscription
        if sub.kind == SubscriptionKind.TRIAL:
            continue
        if kind is not None and sub.kind != kind:
            continue
        if status == "active" and not is_entitled(account, now):
            continue
        if status == "expired" and has_active_window(sub, now):
            continue
        selected.append(account)

    selected.sort(key=lambda a: ensure_utc(a.subscription.start_date), reverse=True)
    return _page([account_summary(a, now) for a in selected], page, limit)


def list_promo_users(*, page: int = 1, limit: int = 20, clock: Clock = system_clock) -> Dict[str, Any]:
    """Accounts that redeemed at least one code, most recent redemption first."""
    now = clock.now()
    redeemers = [a for a in list_accounts() if a.redeemed_promo_codes]
    redeemers.sort(
        key=lambda a: max(ensure_utc(p.redeemed_at) for p in a.redeemed_promo_codes),
        reverse=True,
    )
    return _page([account_summary(a, now) for a in redeemers], page, limit)


def promo_code_stats(*, clock: Clock = system_clock, top: int = 10, expiring_days: int = None) -> Dict[str, Any]:
    now = clock.now()
    horizon = now + timedelta(days=expiring_days or settings.EXPIRING_SOON_DAYS)
    promos = list_promos()

    by_kind = {kind.value: {"total": 0, "redemptions": 0, "redeemable": 0} for kind in PromoKind}
    expiring = []
    for promo in promos:
        bucket = by_kind[promo.kind.value]
        bucket["total"] += 1
        bucket["redemptions"] += promo.redemption_count
        if is_redeemable(promo, now):
            bucket["redeemable"] += 1
            if promo.expires_at is not None and ensure_utc(promo.expires_at) < horizon:
                expiring.append(promo)

    ranked = sorted(promos, key=lambda p: (-p.redemption_count, p.code))[:top]
    expiring.sort(key=lambda p: ensure_utc(p.expires_at))
    redeemers = {r.account_id for p in promos for r in p.redeemed_by}

    def _brief(promo: PromoCode) -> Dict[str, Any]:
        return promo.model_dump(mode="json", exclude={"redeemed_by", "created_by", "created_at"})

    return {
        "summary": {
            "total": len(promos),
            "redeemable": sum(1 for p in promos if is_redeemable(p, now)),
            "used": sum(1 for p in promos if p.redemption_count > 0),
            "accounts_with_promo": len(redeemers),
        },
        "top_codes": [_brief(p) for p in ranked],
        "by_kind": by_kind,
        "expiring_soon": [_brief(p) for p in expiring],
        "computed_at": now.isoformat(),
    }
