"""Credit balance persistence.

Every mutating method is a single SQL statement (a conditional UPDATE or an
upsert) committed on its own, so the database row lock is the only thing
serializing concurrent workers. Never read a balance and write it back from
Python: two workers doing that at once would both see the same ``remaining``
and overdraw it.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import case, literal, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from ..core.tiers import CreditType, TierConfig
from ..models.credit import CreditBalance
from ..models.profile import Profile

BILLING_PERIOD = timedelta(days=30)


class CreditRepository:
    """Data access for credit balances and subscriber tiers."""

    def __init__(self, db: Session):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise NotImplementedError(f"Credit upserts are not supported on {dialect}")

    def _active(self, user_id: str, credit_type: CreditType, now: datetime):
        return (
            CreditBalance.user_id == user_id,
            CreditBalance.credit_type == credit_type.value,
            CreditBalance.period_end > now,
        )

    # -- reads --------------------------------------------------------------

    def get_active(self, user_id: str, credit_type: CreditType, now: datetime) -> Optional[CreditBalance]:
        """Balance row for the current period, or None if missing or expired."""
        return self.db.query(CreditBalance).filter(*self._active(user_id, credit_type, now)).first()

    def list_for_user(self, user_id: str) -> List[CreditBalance]:
        return (
            self.db.query(CreditBalance)
            .filter(CreditBalance.user_id == user_id)
            .order_by(CreditBalance.credit_type)
            .all()
        )

    def get_tier(self, user_id: str) -> Optional[str]:
        profile = self.db.query(Profile).filter(Profile.user_id == user_id).first()
        return profile.subscription_tier if profile else None

    # -- atomic writes ------------------------------------------------------

    def deduct(self, user_id: str, credit_type: CreditType, quantity: int, now: datetime) -> Optional[int]:
        """Take ``quantity`` credits if at least that many remain.

        Returns the new ``remaining``, or None when nothing was deducted
        (insufficient credits, or no active balance).
        """
        stmt = (
            update(CreditBalance)
            .where(*self._active(user_id, credit_type, now), CreditBalance.remaining >= quantity)
            .values(
                remaining=CreditBalance.remaining - quantity,
                used=CreditBalance.used + quantity,
            )
            .returning(CreditBalance.remaining)
            .execution_options(synchronize_session=False)
        )
        try:
            remaining = self.db.execute(stmt).scalar_one_or_none()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return remaining

    def refund(self, user_id: str, credit_type: CreditType, quantity: int, now: datetime) -> Optional[int]:
        """Give back up to ``quantity`` used credits to the active balance.

        Never returns more than was used in the period, so remaining + used
        stays equal to the allocation. Returns the new ``remaining``, or None
        when there is no active balance to refund into.
        """
        returned = case((CreditBalance.used < quantity, CreditBalance.used), else_=literal(quantity))
        stmt = (
            update(CreditBalance)
            .where(*self._active(user_id, credit_type, now))
            .values(
                remaining=CreditBalance.remaining + returned,
                used=CreditBalance.used - returned,
            )
            .returning(CreditBalance.remaining)
            .execution_options(synchronize_session=False)
        )
        try:
            remaining = self.db.execute(stmt).scalar_one_or_none()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return remaining

    def upsert_allocation(self, user_id: str, tier: TierConfig, now: datetime) -> None:
        """Reset every credit type to the tier allocation and record the tier.

        Creates the rows on first allocation; afterwards overwrites
        ``remaining``, zeroes ``used`` and starts a new billing period.
        Unused credits do not carry over.
        """
        insert = self._insert()
        period_end = now + BILLING_PERIOD

        balances = insert(CreditBalance).values([
            {
                "user_id": user_id,
                "credit_type": credit_type.value,
                "remaining": tier.allocation(credit_type),
                "used": 0,
                "period_start": now,
                "period_end": period_end,
                "last_refill_at": now,
            }
            for credit_type in CreditType
        ])
        balances = balances.on_conflict_do_update(
            index_elements=["user_id", "credit_type"],
            set_={
                "remaining": balances.excluded.remaining,
                "used": 0,
                "period_start": balances.excluded.period_start,
                "period_end": balances.excluded.period_end,
                "last_refill_at": balances.excluded.last_refill_at,
            },
        )

        profile = insert(Profile).values(user_id=user_id, subscription_tier=tier.name.value)
        profile = profile.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"subscription_tier": profile.excluded.subscription_tier, "updated_at": func.now()},
        )

        try:
            self.db.execute(balances)
            self.db.execute(profile)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
