"""Campaign model definitions."""
from enum import Enum as PyEnum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Enum as SqlEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class CampaignStatus(str, PyEnum):
    """Review/completion status of a campaign."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class Campaign(Base):
    """A fundraising project owned by a campaign creator."""

    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("goal_amount > 0", name="ck_campaign_positive_goal"),
        CheckConstraint("amount_raised >= 0", name="ck_campaign_amount_raised_non_negative"),
        Index("ix_campaigns_status", "status"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[CampaignStatus] = mapped_column(
        SqlEnum(CampaignStatus), nullable=False, default=CampaignStatus.PENDING
    )
    goal_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_raised: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    owner = relationship("User", back_populates="campaigns")
    donations = relationship("Donation", back_populates="campaign")
    milestones = relationship(
        "Milestone", back_populates="campaign", order_by="Milestone.id", cascade="all, delete-orphan"
    )
