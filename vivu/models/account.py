"""
Account snapshot models.

Accounts are immutable snapshots; the entitlement engine returns updated
copies (model_copy) instead of mutating in place.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


# Far-future end date for lifetime subscriptions; never compared for expiry
LIFETIME_END = datetime(2099, 12, 31, tzinfo=timezone.utc)


class SubscriptionKind(str, Enum):
    TRIAL = "trial"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"
    EXPIRED = "expired"


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SubscriptionKind = SubscriptionKind.TRIAL
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    auto_renew: bool = False


class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    trial_consumed: bool = False
    search_count: int = Field(default=0, ge=0)
    last_search_at: Optional[datetime] = None


class RedeemedPromoCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    redeemed_at: datetime


class Account(BaseModel):
    """
    Account as seen by the subscription engine.

    `version` is the optimistic-concurrency token of the stored record.
    `redeemed_promo_codes` is append-only and ordered by redemption time.
    """
    model_config = ConfigDict(frozen=True)

    account_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "user"
    subscription: Subscription
    usage: Usage = Usage()
    redeemed_promo_codes: Tuple[RedeemedPromoCode, ...] = ()
    version: int = 1
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
