"""Payment plan catalog entries and payment orders."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from vivu.models.account import SubscriptionKind


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SubscriptionKind
    name: str
    price: int  # minor units of the configured currency (VND has none)
    duration_months: int
    description: str


class PaymentOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    account_id: str
    plan_kind: SubscriptionKind
    duration_months: int
    amount: int
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    provider_session_id: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
