"""Credit balance endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.credits import CreditCheckRequest, CreditCheckResult, CreditSummary
from ..services.credit_ledger import CreditLedger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("/{user_id}", response_model=CreditSummary)
def get_balance(user_id: str, db: Session = Depends(get_db)):
    """Current balances for every credit type of a user."""
    return CreditLedger(db).balance(user_id)


@router.post("/{user_id}/check", response_model=CreditCheckResult)
def check_credits(user_id: str, request: CreditCheckRequest, db: Session = Depends(get_db)):
    """Pre-flight check: may the user start work costing ``quantity`` credits?

    A shortfall is a normal 200 response with ``allowed: false``.
    """
    return CreditLedger(db).check(user_id, request.credit_type.value, request.quantity)
