"""Transaction model."""
from enum import Enum as PyEnum

from sqlalchemy import BigInteger, CheckConstraint, Enum as SqlEnum, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class TransactionType(str, PyEnum):
    DONATION = "DONATION"
    PAYOUT = "PAYOUT"


class TransactionStatus(str, PyEnum):
    """Possible transaction statuses."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_COMPLETED_PAYOUT = "type = 'PAYOUT' AND status = 'COMPLETED'"


class Transaction(Base):
    """A money movement recorded in the ledger."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        CheckConstraint(
            "(type = 'PAYOUT' AND milestone_id IS NOT NULL) OR (type = 'DONATION' AND milestone_id IS NULL)",
            name="ck_transaction_milestone_matches_type",
        ),
        Index("ix_transactions_created_at", "created_at"),
        Index("ix_transactions_campaign_type_status", "campaign_id", "type", "status"),
        Index(
            "uq_transactions_completed_payout_milestone",
            "milestone_id",
            unique=True,
            sqlite_where=text(_COMPLETED_PAYOUT),
            postgresql_where=text(_COMPLETED_PAYOUT),
        ),
    )

    type: Mapped[TransactionType] = mapped_column(SqlEnum(TransactionType), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SqlEnum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    campaign_id: Mapped[int] = mapped_column(
        ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    milestone_id: Mapped[int | None] = mapped_column(
        ForeignKey("milestones.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    milestone = relationship("Milestone")
