"""Subscription tiers and their credit allocations."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from ..exceptions import UnknownTierError


class CreditType(str, Enum):
    LOGO = "logo"
    MOCKUP = "mockup"
    VIDEO = "video"


class Tier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    AGENCY = "agency"


@dataclass(frozen=True)
class TierConfig:
    """Credit allowance and billing behaviour of one subscription tier.

    generation_priority is the queue priority used for the tier's jobs
    (1 = highest, 10 = lowest).
    """
    name: Tier
    logo_credits: int
    mockup_credits: int
    video_credits: int
    credits_refill_monthly: bool
    overage_enabled: bool
    generation_priority: int

    def allocation(self, credit_type: CreditType) -> int:
        return {
            CreditType.LOGO: self.logo_credits,
            CreditType.MOCKUP: self.mockup_credits,
            CreditType.VIDEO: self.video_credits,
        }[credit_type]


TIER_CONFIG: Dict[Tier, TierConfig] = {
    Tier.FREE: TierConfig(
        Tier.FREE, logo_credits=4, mockup_credits=4, video_credits=0,
        credits_refill_monthly=False, overage_enabled=False, generation_priority=10,
    ),
    Tier.STARTER: TierConfig(
        Tier.STARTER, logo_credits=20, mockup_credits=30, video_credits=0,
        credits_refill_monthly=True, overage_enabled=False, generation_priority=5,
    ),
    Tier.PRO: TierConfig(
        Tier.PRO, logo_credits=50, mockup_credits=100, video_credits=10,
        credits_refill_monthly=True, overage_enabled=True, generation_priority=1,
    ),
    Tier.AGENCY: TierConfig(
        Tier.AGENCY, logo_credits=200, mockup_credits=500, video_credits=50,
        credits_refill_monthly=True, overage_enabled=True, generation_priority=1,
    ),
}


def get_tier_config(tier: str) -> TierConfig:
    """Config for ``tier``. Raises UnknownTierError for unrecognised names."""
    try:
        return TIER_CONFIG[Tier(tier)]
    except ValueError:
        raise UnknownTierError(str(tier), [t.value for t in Tier]) from None
