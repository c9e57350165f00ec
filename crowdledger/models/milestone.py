"""Milestone model definitions."""
from enum import Enum as PyEnum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Enum as SqlEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class MilestoneStatus(str, PyEnum):
    """Possible statuses for a milestone."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class Milestone(Base):
    """A partial deliverable of a campaign that releases funds once approved."""

    __tablename__ = "milestones"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_milestone_positive_amount"),)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    proof_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[MilestoneStatus] = mapped_column(
        SqlEnum(MilestoneStatus), nullable=False, default=MilestoneStatus.PENDING
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    campaign_id: Mapped[int] = mapped_column(
        ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    campaign = relationship("Campaign", back_populates="milestones")
    votes = relationship("MilestoneVote", back_populates="milestone")
