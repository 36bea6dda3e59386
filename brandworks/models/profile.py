"""Subscriber profile model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from ..database import Base


class Profile(Base):
    """Billing-facing view of a user.

    Only the subscription tier is stored here; it decides the credit
    allocation on refill and whether overage is allowed once credits run out.
    Allowed tiers: free, starter, pro, agency.
    """

    __tablename__ = "profiles"

    user_id = Column(String(50), primary_key=True)
    subscription_tier = Column(String(20), nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
