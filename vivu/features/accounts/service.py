"""
Account domain service.
- create_account(...)
- get_or_create_account(account_id)
- authenticate(email, password): bcrypt check for the login route
- admin_update_account(...): role, profile and subscription overrides
- normalize_email()
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

import bcrypt
from pydantic import ValidationError as PydanticValidationError

from vivu.core.clock import Clock, ensure_utc, system_clock
from vivu.core.config import settings
from vivu.core.errors import AuthenticationError, ConflictError, ValidationError
from vivu.features.accounts.store import (
    find_account_by_email,
    get_account,
    get_password_hash,
    insert_account,
    load_account,
    save_account,
    update_profile,
)
from vivu.models.account import LIFETIME_END, Account, Subscription, SubscriptionKind, Usage


logger = logging.getLogger("vivu")


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    normalized = email.strip().lower()
    if not normalized:
        return None
    if "@" not in normalized:
        raise ValidationError(f"Invalid email address: {email!r}", code="invalid_email")
    return normalized


def new_trial_account(
    account_id: str,
    *,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    role: str = "user",
    clock: Clock = system_clock,
) -> Account:
    """Build (but do not persist) a fresh account on the one-shot trial."""
    now = clock.now()
    return Account(
        account_id=account_id,
        email=email,
        display_name=display_name,
        role=role,
        subscription=Subscription(
            kind=SubscriptionKind.TRIAL,
            start_date=now,
            end_date=now + timedelta(hours=settings.TRIAL_DISPLAY_HOURS),
            is_active=True,
            auto_renew=False,
        ),
        usage=Usage(),
        created_at=now,
    )


PASSWORD_MIN_LENGTH = 8
# bcrypt only looks at the first 72 bytes
PASSWORD_MAX_BYTES = 72

ROLES = ("user", "admin")
SUBSCRIPTION_OVERRIDE_FIELDS = ("kind", "start_date", "end_date", "is_active", "auto_renew")


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against its stored hash (False when none is stored)."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def _check_password(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters", code="weak_password"
        )
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        raise ValidationError(
            f"Password must be at most {PASSWORD_MAX_BYTES} bytes", code="password_too_long"
        )


def create_account(
    *,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    account_id: Optional[str] = None,
    password: Optional[str] = None,
    role: str = "user",
    clock: Clock = system_clock,
) -> Account:
    email = normalize_email(email)
    if email and find_account_by_email(email):
        raise ConflictError("Email is already registered", code="email_taken")
    password_hash = None
    if password is not None:
        if not email:
            raise ValidationError("A password needs an email to log in with", code="email_required")
        _check_password(password)
        password_hash = hash_password(password)

    display = display_name.strip() if display_name and display_name.strip() else None
    account = new_trial_account(
        account_id or str(uuid4()),
        email=email,
        display_name=display,
        role=role,
        clock=clock,
    )
    created = insert_account(account, password_hash=password_hash)
    logger.info("[account] created", extra={"account_id": created.account_id})
    return created


def authenticate(email: Optional[str], password: Optional[str]) -> Account:
    """
    Resolve an email/password pair to its account.

    Unknown email and wrong password raise the same AuthenticationError.
    """
    normalized = (email or "").strip().lower()
    account = find_account_by_email(normalized) if normalized else None
    if account is None or not verify_password(password or "", get_password_hash(account.account_id)):
        logger.info("[account] login rejected", extra={"account_id": account.account_id if account else None})
        raise AuthenticationError("Invalid email or password")
    logger.info("[account] login", extra={"account_id": account.account_id})
    return account


def admin_update_account(
    account_id: str,
    *,
    display_name: Optional[str] = None,
    role: Optional[str] = None,
    subscription: Optional[Dict[str, Any]] = None,
) -> Account:
    """
    Admin override of profile, role and subscription fields.

    Subscription fields are merged over the stored window and saved with the
    usual version check; a lifetime kind without an end_date gets the
    lifetime sentinel.
    """
    if role is not None and role not in ROLES:
        raise ValidationError(f"Unknown role: {role!r}", code="invalid_role")
    account = update_profile(account_id, display_name=display_name, role=role)

    overrides = {k: v for k, v in (subscription or {}).items() if v is not None}
    unknown = set(overrides) - set(SUBSCRIPTION_OVERRIDE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown subscription fields: {', '.join(sorted(unknown))}", code="invalid_subscription"
        )
    if overrides:
        merged = account.subscription.model_dump()
        merged.update(overrides)
        if merged["kind"] == SubscriptionKind.LIFETIME and "end_date" not in overrides:
            merged["end_date"] = LIFETIME_END
        try:
            updated = Subscription(**merged)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid subscription override: {exc.errors()[0]['msg']}", code="invalid_subscription") from exc
        updated = updated.model_copy(update={
            "start_date": ensure_utc(updated.start_date),
            "end_date": ensure_utc(updated.end_date),
        })
        account = save_account(account.model_copy(update={"subscription": updated}))

    logger.info(
        "[admin] account updated",
        extra={"account_id": account_id, "kind": account.subscription.kind.value},
    )
    return load_account(account_id)


def get_or_create_account(account_id: str, clock: Clock = system_clock) -> Account:
    existing = get_account(account_id)
    if existing:
        return existing
    try:
        return create_account(account_id=account_id, clock=clock)
    except ConflictError:
        # Lost a creation race with another request for the same id
        existing = get_account(account_id)
        if existing is None:
            raise
        return existing
