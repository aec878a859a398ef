"""
vivu/features/accounts/store.py

Account persistence with optimistic concurrency.

- load_account(account_id) -> Account
- save_account(account) -> Account (conditional on `version`)
- insert_account(account) -> Account
- get_password_hash(account_id) (kept out of the Account snapshot)
"""

from typing import List, Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from vivu.core.clock import ensure_utc
from vivu.core.database import get_db_session, accounts, account_promo_codes
from vivu.core.errors import ConcurrencyConflictError, ConflictError, NotFoundError
from vivu.models.account import Account, RedeemedPromoCode, Subscription, SubscriptionKind, Usage


def _row_to_account(row, promo_rows) -> Account:
    return Account(
        account_id=row.account_id,
        email=row.email,
        display_name=row.display_name,
        role=row.role,
        subscription=Subscription(
            kind=SubscriptionKind(row.subscription_kind),
            start_date=ensure_utc(row.subscription_start),
            end_date=ensure_utc(row.subscription_end),
            is_active=bool(row.subscription_is_active),
            auto_renew=bool(row.subscription_auto_renew),
        ),
        usage=Usage(
            trial_consumed=bool(row.trial_consumed),
            search_count=row.search_count,
            last_search_at=ensure_utc(row.last_search_at),
        ),
        redeemed_promo_codes=tuple(
            RedeemedPromoCode(code=p.code, redeemed_at=ensure_utc(p.redeemed_at))
            for p in promo_rows
        ),
        version=row.version,
        created_at=ensure_utc(row.created_at),
    )


def _state_values(account: Account) -> dict:
    sub = account.subscription
    return {
        "subscription_kind": sub.kind.value,
        "subscription_start": sub.start_date,
        "subscription_end": sub.end_date,
        "subscription_is_active": sub.is_active,
        "subscription_auto_renew": sub.auto_renew,
        "trial_consumed": account.usage.trial_consumed,
        "search_count": account.usage.search_count,
        "last_search_at": account.usage.last_search_at,
    }


def _load_promo_rows(session, account_id: str):
    return session.execute(
        select(account_promo_codes)
        .where(account_promo_codes.c.account_id == account_id)
        .order_by(account_promo_codes.c.redeemed_at, account_promo_codes.c.id)
    ).all()


def get_account(account_id: str) -> Optional[Account]:
    with get_db_session() as session:
        row = session.execute(select(accounts).where(accounts.c.account_id == account_id)).first()
        if not row:
            return None
        return _row_to_account(row, _load_promo_rows(session, account_id))


def load_account(account_id: str) -> Account:
    account = get_account(account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def find_account_by_email(email: str) -> Optional[Account]:
    with get_db_session() as session:
        row = session.execute(select(accounts).where(accounts.c.email == email)).first()
        if not row:
            return None
        return _row_to_account(row, _load_promo_rows(session, row.account_id))


def insert_account(account: Account, password_hash: Optional[str] = None) -> Account:
    """Persist a brand-new account. Raises ConflictError on duplicate id/email."""
    values = _state_values(account)
    values.update(
        account_id=account.account_id,
        email=account.email,
        display_name=account.display_name,
        role=account.role,
        password_hash=password_hash,
        version=1,
    )
    if account.created_at is not None:
        values["created_at"] = account.created_at
    try:
        with get_db_session() as session:
            session.execute(insert(accounts).values(**values))
    except IntegrityError:
        raise ConflictError(f"Account {account.account_id} already exists", code="account_exists")
    return load_account(account.account_id)


def save_account(account: Account) -> Account:
    """
    Write subscription/usage state if the stored version still matches.

    New entries in `redeemed_promo_codes` are appended in the same
    transaction. Raises ConcurrencyConflictError when another writer got
    there first; nothing is written in that case.
    """
    with get_db_session() as session:
        result = session.execute(
            update(accounts)
            .where(accounts.c.account_id == account.account_id)
            .where(accounts.c.version == account.version)
            .values(version=accounts.c.version + 1, **_state_values(account))
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Account {account.account_id} changed concurrently (version {account.version})"
            )

        stored_codes = {
            row.code
            for row in session.execute(
                select(account_promo_codes.c.code)
                .where(account_promo_codes.c.account_id == account.account_id)
            ).all()
        }
        for entry in account.redeemed_promo_codes:
            if entry.code in stored_codes:
                continue
            session.execute(
                insert(account_promo_codes).values(
                    account_id=account.account_id,
                    code=entry.code,
                    redeemed_at=entry.redeemed_at,
                )
            )
    return account.model_copy(update={"version": account.version + 1})


def list_accounts() -> List[Account]:
    with get_db_session() as session:
        rows = session.execute(select(accounts).order_by(accounts.c.created_at)).all()
        return [_row_to_account(row, _load_promo_rows(session, row.account_id)) for row in rows]


def update_profile(account_id: str, *, display_name: Optional[str] = None, role: Optional[str] = None) -> Account:
    """Profile fields do not take part in the version check."""
    values = {}
    if display_name is not None:
        values["display_name"] = display_name
    if role is not None:
        values["role"] = role
    if values:
        with get_db_session() as session:
            result = session.execute(
                update(accounts).where(accounts.c.account_id == account_id).values(**values)
            )
            if result.rowcount != 1:
                raise NotFoundError(f"Account {account_id} not found")
    return load_account(account_id)


def get_password_hash(account_id: str) -> Optional[str]:
    with get_db_session() as session:
        return session.execute(
            select(accounts.c.password_hash).where(accounts.c.account_id == account_id)
        ).scalar()
