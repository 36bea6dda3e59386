"""Credit ledger request/result schemas."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.tiers import CreditType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreditCheckResult(_CamelModel):
    """Outcome of a pre-flight credit check.

    A shortfall is an expected outcome, reported here rather than raised:
    allowed=False with needs_upgrade=True tells the caller to prompt an upgrade.
    overage_allowed=True means the request may proceed but the caller must
    bill the overage separately.
    """
    allowed: bool
    remaining: int
    needs_upgrade: bool = False
    overage_allowed: bool = False


class DeductResult(_CamelModel):
    success: bool
    remaining: int


class CreditBalanceResponse(_CamelModel):
    credit_type: CreditType
    remaining: int
    used: int
    total: int
    period_end: Optional[datetime] = None


class CreditSummary(_CamelModel):
    """All balances of a user, keyed by credit type."""
    user_id: str
    balances: Dict[CreditType, CreditBalanceResponse] = Field(default_factory=dict)
    period_end: Optional[datetime] = None


class CreditCheckRequest(_CamelModel):
    """Body of POST /api/credits/{user_id}/check."""
    credit_type: CreditType
    quantity: int = Field(default=1, gt=0)
