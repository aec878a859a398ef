"""
vivu/features/promos/store.py

Promo code persistence.

The redemption counter and the per-code ledger always change together in
one transaction:
- conditional_increment: guarded UPDATE (active / cap / expiry) + ledger INSERT
  (UNIQUE(code, account_id) rejects a second redemption by the same account)
- revert_increment: ledger DELETE + counter decrement (saga compensation)
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, insert, update, delete, or_, and_
from sqlalchemy.exc import IntegrityError

from vivu.core.clock import ensure_utc
from vivu.core.database import get_db_session, promo_codes, promo_redemptions
from vivu.core.errors import ConflictError, NotFoundError
from vivu.models.promo_code import PromoCode, PromoKind, PromoRedeemer


def _row_to_promo(row, ledger_rows) -> PromoCode:
    return PromoCode(
        code=row.code,
        kind=PromoKind(row.kind),
        duration_months=row.duration_months,
        max_redemptions=row.max_redemptions,
        redemption_count=row.redemption_count,
        redeemed_by=tuple(
            PromoRedeemer(account_id=r.account_id, redeemed_at=ensure_utc(r.redeemed_at))
            for r in ledger_rows
        ),
        expires_at=ensure_utc(row.expires_at),
        active=bool(row.active),
        created_by=row.created_by,
        created_at=ensure_utc(row.created_at),
    )


def _load_ledger(session, code: str):
    return session.execute(
        select(promo_redemptions)
        .where(promo_redemptions.c.code == code)
        .order_by(promo_redemptions.c.redeemed_at, promo_redemptions.c.id)
    ).all()


def find_by_code(code: str) -> Optional[PromoCode]:
    """Look up an already-canonicalized code."""
    with get_db_session() as session:
        row = session.execute(select(promo_codes).where(promo_codes.c.code == code)).first()
        if not row:
            return None
        return _row_to_promo(row, _load_ledger(session, code))


def insert_promo(promo: PromoCode) -> PromoCode:
    values = dict(
        code=promo.code,
        kind=promo.kind.value,
        duration_months=promo.duration_months,
        max_redemptions=promo.max_redemptions,
        redemption_count=0,
        expires_at=promo.expires_at,
        active=promo.active,
        created_by=promo.created_by,
    )
    if promo.created_at is not None:
        values["created_at"] = promo.created_at
    try:
        with get_db_session() as session:
            session.execute(insert(promo_codes).values(**values))
    except IntegrityError:
        raise ConflictError(f"Promo code {promo.code} already exists", code="promo_exists")
    return find_by_code(promo.code)


def conditional_increment(code: str, account_id: str, now: datetime) -> bool:
    """
    Claim one redemption of `code` for `account_id`.

    Returns False (and writes nothing) when the code is inactive, exhausted,
    expired at `now`, or already redeemed by this account.
    """
    now = ensure_utc(now)
    try:
        with get_db_session() as session:
            result = session.execute(
                update(promo_codes)
                .where(promo_codes.c.code == code)
                .where(promo_codes.c.active.is_(True))
                .where(or_(
                    promo_codes.c.max_redemptions.is_(None),
                    promo_codes.c.redemption_count < promo_codes.c.max_redemptions,
                ))
                .where(or_(
                    promo_codes.c.expires_at.is_(None),
                    promo_codes.c.expires_at > now,
                ))
                .values(redemption_count=promo_codes.c.redemption_count + 1)
            )
            if result.rowcount != 1:
                return False
            session.execute(
                insert(promo_redemptions).values(
                    code=code,
                    account_id=account_id,
                    redeemed_at=now,
                )
            )
    except IntegrityError:
        # Ledger already holds (code, account_id); the counter bump rolled back too
        return False
    return True


def revert_increment(code: str, account_id: str) -> bool:
    """Undo a conditional_increment. Returns False if there was nothing to undo."""
    with get_db_session() as session:
        removed = session.execute(
            delete(promo_redemptions)
            .where(promo_redemptions.c.code == code)
            .where(promo_redemptions.c.account_id == account_id)
        )
        if removed.rowcount != 1:
            return False
        session.execute(
            update(promo_codes)
            .where(and_(promo_codes.c.code == code, promo_codes.c.redemption_count > 0))
            .values(redemption_count=promo_codes.c.redemption_count - 1)
        )
    return True


def list_promos() -> List[PromoCode]:
    with get_db_session() as session:
        rows = session.execute(
            select(promo_codes).order_by(promo_codes.c.created_at.desc(), promo_codes.c.code)
        ).all()
        return [_row_to_promo(row, _load_ledger(session, row.code)) for row in rows]


def set_active(code: str, active: bool) -> PromoCode:
    with get_db_session() as session:
        result = session.execute(
            update(promo_codes).where(promo_codes.c.code == code).values(active=active)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Promo code {code} not found", code="promo_not_found")
    return find_by_code(code)


def delete_promo(code: str) -> None:
    with get_db_session() as session:
        session.execute(delete(promo_redemptions).where(promo_redemptions.c.code == code))
        result = session.execute(delete(promo_codes).where(promo_codes.c.code == code))
        if result.rowcount != 1:
            raise NotFoundError(f"Promo code {code} not found", code="promo_not_found")
