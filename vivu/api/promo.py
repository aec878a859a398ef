"""
Promo redemption route (account-facing).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from vivu.api.account import serialize_account
from vivu.core.auth import get_current_account_id
from vivu.core.clock import Clock, get_clock
from vivu.features.promos.service import redeem_promo_code


router = APIRouter(prefix="/v1/promo", tags=["promo"])


class ApplyPromoRequest(BaseModel):
    code: Optional[str] = None


@router.post("/apply")
async def apply_promo_code(
    body: ApplyPromoRequest,
    account_id: str = Depends(get_current_account_id),
    clock: Clock = Depends(get_clock),
):
    """
    Redeem a promo code for the calling account.

    Errors:
        400: invalid_promo_code
        404: promo_not_found
        409: promo_not_redeemable, promo_already_used, concurrency_conflict
    """
    outcome = redeem_promo_code(account_id, body.code, clock=clock)
    return {
        "message": "Promo code applied",
        "promo": {
            "code": outcome.promo.code,
            "kind": outcome.promo.kind.value,
            "duration_months": outcome.promo.duration_months,
        },
        "account": serialize_account(outcome.account, clock),
    }
