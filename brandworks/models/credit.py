"""Credit balance model."""

from sqlalchemy import Column, String, Integer, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from ..database import Base


class CreditBalance(Base):
    """Per-user, per-credit-type allowance for the current billing period.

    ``remaining + used`` is the period's allocation. Rows are only written by
    CreditRepository, each change being one conditional UPDATE or upsert, so
    concurrent workers are serialized by the database row lock.

    A row whose ``period_end`` has passed is inactive: it cannot be spent
    from or refunded into until the next refill.
    """

    __tablename__ = "credit_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "credit_type", name="uq_credit_balances_user_type"),
        CheckConstraint("remaining >= 0", name="ck_credit_balances_remaining_non_negative"),
        CheckConstraint("used >= 0", name="ck_credit_balances_used_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(50), nullable=False, index=True)

    # Allowed values: logo, mockup, video
    credit_type = Column(String(20), nullable=False)

    remaining = Column(Integer, nullable=False, default=0)
    used = Column(Integer, nullable=False, default=0)

    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    last_refill_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def total(self) -> int:
        return self.remaining + self.used
