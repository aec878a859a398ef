"""
Search gate.

The travel-search handler calls this before running a query. A trial
account spends its single free search here; paid accounts are only
counted.
"""
from fastapi import APIRouter, Depends

from vivu.api.account import serialize_account
from vivu.core.auth import get_current_account_id
from vivu.core.clock import Clock, get_clock
from vivu.features.entitlements.service import authorize_search


router = APIRouter(prefix="/v1/search", tags=["search"])


@router.post("/authorize")
async def authorize(account_id: str = Depends(get_current_account_id), clock: Clock = Depends(get_clock)):
    """
    Errors:
        402: subscription_required (trial spent, plan expired)
        409: concurrency_conflict (retries exhausted)
    """
    grant = authorize_search(account_id, clock=clock)
    return {
        "allowed": True,
        "via_trial": grant.via_trial,
        "account": serialize_account(grant.account, clock),
    }
