"""
vivu/features/promos/service.py

Promo code redemption and administration.

Redemption runs as a two-step saga because the account record and the promo
record are separate documents:
1. claim the promo (conditional increment + ledger entry), the capped resource
2. save the account with the new window (versioned)
If step 2 fails the claim is reverted (a few attempts, then an error log)
before the error surfaces. The whole transition is retried from a fresh
read on ConcurrencyConflictError.
"""

import logging
from datetime import datetime
from typing import List, Optional

from vivu.core.clock import Clock, ensure_utc, system_clock
from vivu.core.config import settings
from vivu.core.errors import (
    ConcurrencyConflictError,
    PromoAlreadyUsedError,
    PromoNotFoundError,
    PromoNotRedeemableError,
    InvalidPromoCodeError,
    ValidationError,
)
from vivu.features.accounts.store import load_account, save_account
from vivu.features.entitlements.engine import RedemptionOutcome, apply_promo, is_redeemable
from vivu.features.promos import store
from vivu.models.promo_code import MAX_CODE_LENGTH, PromoCode, PromoKind, canonicalize_code


logger = logging.getLogger("vivu")

# Compensation attempts when the account save fails after a claim
REVERT_ATTEMPTS = 3

DEFAULT_PROMO_CODES = {
    "VIVU1MON": {
        "kind": PromoKind.MONTHLY,
        "duration_months": 1,
        "max_redemptions": None,
        "expires_at": None,
    },
}


def _require_valid_code(code: Optional[str]) -> str:
    """Canonical form of `code`, or InvalidPromoCodeError when it is blank or malformed."""
    canonical = canonicalize_code(code)
    if not canonical:
        raise InvalidPromoCodeError("Promo code is required")
    if len(canonical) > MAX_CODE_LENGTH:
        raise InvalidPromoCodeError(f"Promo code must be at most {MAX_CODE_LENGTH} characters")
    if any(ch.isspace() for ch in canonical):
        raise InvalidPromoCodeError("Promo code must not contain whitespace")
    return canonical


def _revert_claim(code: str, account_id: str) -> bool:
    """Undo a promo claim, retrying a bounded number of times."""
    for attempt in range(1, REVERT_ATTEMPTS + 1):
        try:
            return store.revert_increment(code, account_id)
        except Exception:
            if attempt == REVERT_ATTEMPTS:
                logger.error(
                    "[promo] claim revert failed, promo count is ahead of the account",
                    exc_info=True,
                    extra={"account_id": account_id, "code": code, "attempt": attempt},
                )
                return False
            logger.warning(
                "[promo] claim revert failed, retrying",
                extra={"account_id": account_id, "code": code, "attempt": attempt},
            )
    return False


def _redeem_once(account_id: str, code: str, now: datetime) -> RedemptionOutcome:
    promo = store.find_by_code(code)
    if promo is None:
        raise PromoNotFoundError(f"Promo code {code} does not exist")

    account = load_account(account_id)
    outcome = apply_promo(account, promo, now)

    if not store.conditional_increment(code, account_id, now):
        fresh = store.find_by_code(code)
        if fresh is None:
            raise PromoNotFoundError(f"Promo code {code} does not exist")
        if not is_redeemable(fresh, now):
            raise PromoNotRedeemableError(f"Promo code {code} is no longer redeemable")
        if fresh.has_redeemed(account_id):
            raise PromoAlreadyUsedError(f"Promo code {code} was already used by this account")
        raise ConcurrencyConflictError(f"Promo code {code} changed concurrently")

    try:
        saved = save_account(outcome.account)
    except Exception:
        reverted = _revert_claim(code, account_id)
        logger.warning(
            "[promo] account save failed after claim",
            extra={"account_id": account_id, "code": code, "reverted": reverted},
        )
        raise

    return RedemptionOutcome(account=saved, promo=store.find_by_code(code) or outcome.promo)


def redeem_promo_code(
    account_id: str,
    code: Optional[str],
    *,
    clock: Clock = system_clock,
    max_retries: Optional[int] = None,
) -> RedemptionOutcome:
    """
    Redeem `code` for `account_id`.

    Raises one of InvalidPromoCodeError, PromoNotFoundError,
    PromoNotRedeemableError, PromoAlreadyUsedError or, once retries are
    exhausted, ConcurrencyConflictError.
    """
    canonical = _require_valid_code(code)

    retries = settings.REDEMPTION_MAX_RETRIES if max_retries is None else max_retries
    attempt = 0
    while True:
        try:
            outcome = _redeem_once(account_id, canonical, clock.now())
        except ConcurrencyConflictError:
            if attempt >= retries:
                logger.warning(
                    "[promo] redemption conflict, giving up",
                    extra={"account_id": account_id, "code": canonical, "attempt": attempt},
                )
                raise
            attempt += 1
            logger.info(
                "[promo] redemption conflict, retrying",
                extra={"account_id": account_id, "code": canonical, "attempt": attempt},
            )
            continue

        logger.info(
            "[promo] redeemed",
            extra={
                "account_id": account_id,
                "code": canonical,
                "kind": outcome.account.subscription.kind.value,
                "end_date": outcome.account.subscription.end_date.isoformat(),
            },
        )
        return outcome


def create_promo_code(
    code: str,
    kind: PromoKind,
    duration_months: int = 1,
    *,
    max_redemptions: Optional[int] = 1,
    expires_at: Optional[datetime] = None,
    created_by: Optional[str] = None,
    clock: Clock = system_clock,
) -> PromoCode:
    """Create a code. `max_redemptions=None` means unlimited."""
    canonical = _require_valid_code(code)
    kind = PromoKind(kind)
    if kind != PromoKind.LIFETIME and duration_months < 1:
        raise ValidationError("duration_months must be at least 1", code="invalid_duration")
    if max_redemptions is not None and max_redemptions < 1:
        raise ValidationError("max_redemptions must be at least 1 or null", code="invalid_max_redemptions")

    promo = store.insert_promo(
        PromoCode(
            code=canonical,
            kind=kind,
            duration_months=0 if kind == PromoKind.LIFETIME else duration_months,
            max_redemptions=max_redemptions,
            expires_at=ensure_utc(expires_at),
            active=True,
            created_by=created_by,
            created_at=clock.now(),
        )
    )
    logger.info("[promo] created", extra={"code": canonical, "kind": kind.value, "account_id": created_by})
    return promo


def get_promo_code(code: str) -> PromoCode:
    canonical = canonicalize_code(code)
    promo = store.find_by_code(canonical)
    if promo is None:
        raise PromoNotFoundError(f"Promo code {canonical} does not exist")
    return promo


def list_promo_codes() -> List[PromoCode]:
    return store.list_promos()


def deactivate_promo_code(code: str) -> PromoCode:
    promo = store.set_active(canonicalize_code(code), False)
    logger.info("[promo] deactivated", extra={"code": promo.code})
    return promo


def delete_promo_code(code: str) -> None:
    canonical = canonicalize_code(code)
    store.delete_promo(canonical)
    logger.info("[promo] deleted", extra={"code": canonical})


def seed_default_promo_codes(clock: Clock = system_clock) -> None:
    """Create the built-in codes if missing (idempotent)."""
    for code, config in DEFAULT_PROMO_CODES.items():
        if store.find_by_code(code):
            continue
        create_promo_code(
            code,
            config["kind"],
            config["duration_months"],
            max_redemptions=config["max_redemptions"],
            expires_at=config["expires_at"],
            created_by="system",
            clock=clock,
        )
