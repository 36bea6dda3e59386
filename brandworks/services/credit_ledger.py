"""Credit ledger: gates and meters costly generation work.

All balance changes go through CreditRepository, one atomic statement per
operation. Running out of credits is a normal business outcome and is
reported through result objects; only storage failures raise.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import sqlalchemy.exc
from sqlalchemy.orm import Session

from ..core.tiers import CreditType, get_tier_config
from ..exceptions import LedgerError, UnknownTierError, ValidationError
from ..repositories.credit_repository import CreditRepository
from ..schemas.credits import (
    CreditBalanceResponse,
    CreditCheckResult,
    CreditSummary,
    DeductResult,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _credit_type(value) -> CreditType:
    try:
        return CreditType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown credit type: {value}. Must be one of: {[c.value for c in CreditType]}",
            field="credit_type",
        ) from None


def _quantity(value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError("Credit quantity must be a positive integer", field="quantity")
    return value


class CreditLedger:
    """
    Check, deduct, refund, refill and allocate credits.

    One instance per database session; construct it per request or per job
    like any other service.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.repo = CreditRepository(db)
        self._now = clock or _utcnow

    def check(self, user_id: str, credit_type: str, quantity: int = 1) -> CreditCheckResult:
        """
        Pre-flight check before starting costly work.

        Enough credits: allowed. Not enough, but the user's tier bills
        overage: allowed with overage_allowed set. Otherwise denied with
        needs_upgrade set. A storage failure denies the request without
        suggesting an upgrade.
        """
        ctype = _credit_type(credit_type)
        quantity = _quantity(quantity)

        try:
            balance = self.repo.get_active(user_id, ctype, self._now())
            if balance is None:
                logger.info(f"No active {ctype.value} credits for user {user_id}")
                return CreditCheckResult(allowed=False, remaining=0, needs_upgrade=True)

            if balance.remaining >= quantity:
                return CreditCheckResult(allowed=True, remaining=balance.remaining)

            tier_name = self.repo.get_tier(user_id)
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"Credit check failed for user {user_id}: {e}")
            self.db.rollback()
            return CreditCheckResult(allowed=False, remaining=0, needs_upgrade=False)

        tier = None
        if tier_name:
            try:
                tier = get_tier_config(tier_name)
            except UnknownTierError:
                logger.warning(f"User {user_id} has unknown subscription tier {tier_name!r}")

        if tier is not None and tier.overage_enabled:
            logger.info(
                f"User {user_id} out of {ctype.value} credits, proceeding as overage",
                extra={"tier": tier.name.value, "remaining": balance.remaining, "quantity": quantity},
            )
            return CreditCheckResult(allowed=True, remaining=balance.remaining, overage_allowed=True)

        return CreditCheckResult(allowed=False, remaining=balance.remaining, needs_upgrade=True)

    def deduct(self, user_id: str, credit_type: str, quantity: int = 1,
               reason: Optional[str] = None) -> DeductResult:
        """
        Atomically take credits.

        Returns success=False (without raising) when fewer than ``quantity``
        credits remain; concurrent deductions can never overdraw the balance.

        Raises:
            LedgerError: If the database operation fails.
        """
        ctype = _credit_type(credit_type)
        quantity = _quantity(quantity)
        now = self._now()

        try:
            remaining = self.repo.deduct(user_id, ctype, quantity, now)
            if remaining is not None:
                logger.info(
                    f"Deducted {quantity} {ctype.value} credit(s) from user {user_id}",
                    extra={"remaining": remaining, "reason": reason},
                )
                return DeductResult(success=True, remaining=remaining)

            balance = self.repo.get_active(user_id, ctype, now)
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"Credit deduction failed for user {user_id}: {e}")
            raise LedgerError("Credit deduction failed", original_error=e) from e

        current = balance.remaining if balance else 0
        logger.info(
            f"Insufficient {ctype.value} credits for user {user_id}",
            extra={"remaining": current, "requested": quantity, "reason": reason},
        )
        return DeductResult(success=False, remaining=current)

    def refund(self, user_id: str, credit_type: str, quantity: int = 1,
               reason: Optional[str] = None) -> None:
        """
        Return credits after a failed generation.

        No-op (logged) when the user has no active balance row: refunding
        into a period that already rolled over must not create credits.

        Raises:
            LedgerError: If the database operation fails.
        """
        ctype = _credit_type(credit_type)
        quantity = _quantity(quantity)

        try:
            remaining = self.repo.refund(user_id, ctype, quantity, self._now())
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"Credit refund failed for user {user_id}: {e}")
            raise LedgerError("Credit refund failed", original_error=e) from e

        if remaining is None:
            logger.warning(
                f"Refund skipped: no active {ctype.value} balance for user {user_id}",
                extra={"quantity": quantity, "reason": reason},
            )
            return

        logger.info(
            f"Refunded {quantity} {ctype.value} credit(s) to user {user_id}",
            extra={"remaining": remaining, "reason": reason},
        )

    def refill(self, user_id: str, tier: str) -> None:
        """
        Start a new billing period at the tier's allocation.

        Unused credits do not carry over. Tiers without monthly refill
        (free) are left untouched.

        Raises:
            UnknownTierError: If ``tier`` is not a known tier.
            LedgerError: If the database operation fails.
        """
        config = get_tier_config(tier)
        if not config.credits_refill_monthly:
            logger.info(f"Tier {config.name.value} does not refill monthly, skipping user {user_id}")
            return
        self._upsert(user_id, config, "refill")

    def allocate(self, user_id: str, tier: str) -> None:
        """
        Create (or reset) a subscriber's balances for ``tier``.

        Raises:
            UnknownTierError: If ``tier`` is not a known tier.
            LedgerError: If the database operation fails.
        """
        self._upsert(user_id, get_tier_config(tier), "allocate")

    def _upsert(self, user_id, config, operation: str) -> None:
        try:
            self.repo.upsert_allocation(user_id, config, self._now())
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"Credit {operation} failed for user {user_id}: {e}")
            raise LedgerError(f"Credit {operation} failed", original_error=e) from e

        logger.info(
            f"Credits {operation} for user {user_id} on tier {config.name.value}",
            extra={
                "logo": config.logo_credits,
                "mockup": config.mockup_credits,
                "video": config.video_credits,
            },
        )

    def balance(self, user_id: str) -> CreditSummary:
        """Current balances across credit types."""
        rows = self.repo.list_for_user(user_id)
        balances = {
            CreditType(row.credit_type): CreditBalanceResponse(
                credit_type=row.credit_type,
                remaining=row.remaining,
                used=row.used,
                total=row.total,
                period_end=row.period_end,
            )
            for row in rows
        }
        period_ends = [row.period_end for row in rows if row.period_end is not None]
        return CreditSummary(
            user_id=user_id,
            balances=balances,
            period_end=min(period_ends) if period_ends else None,
        )
