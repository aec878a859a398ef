"""
Promo code model.

Codes are canonicalized (trimmed, uppercased) before storage and lookup.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class PromoKind(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    LIFETIME = "lifetime"


class PromoRedeemer(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    redeemed_at: datetime


class PromoCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    kind: PromoKind
    duration_months: int = Field(default=1, ge=0)  # ignored for lifetime
    max_redemptions: Optional[int] = None  # None = unlimited
    redemption_count: int = Field(default=0, ge=0)
    redeemed_by: Tuple[PromoRedeemer, ...] = ()
    expires_at: Optional[datetime] = None
    active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def has_redeemed(self, account_id: str) -> bool:
        return any(r.account_id == account_id for r in self.redeemed_by)


# Matches the promo_codes.code column
MAX_CODE_LENGTH = 64


def canonicalize_code(code: Optional[str]) -> str:
    """Trim and uppercase a user-supplied code ('' when missing)."""
    if code is None:
        return ""
    return code.strip().upper()
