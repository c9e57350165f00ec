"""Donation model."""
from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Donation(Base):
    """An immutable contribution from a donor to a campaign."""

    __tablename__ = "donations"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_donation_positive_amount"),)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    campaign_id: Mapped[int] = mapped_column(
        ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    donor = relationship("User", back_populates="donations")
    campaign = relationship("Campaign", back_populates="donations")
