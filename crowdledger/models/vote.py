"""Milestone vote model."""
from sqlalchemy import Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class MilestoneVote(Base):
    """One user's approval decision on one milestone."""

    __tablename__ = "milestone_votes"
    __table_args__ = (UniqueConstraint("user_id", "milestone_id", name="uq_milestone_vote_user_milestone"),)

    approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    milestone_id: Mapped[int] = mapped_column(
        ForeignKey("milestones.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    milestone = relationship("Milestone", back_populates="votes")
