"""Ledger queries, row locks and reconciliation."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from crowdledger import db as db_module
from crowdledger.core.errors import NotFoundError
from crowdledger.core.runtime_state import record_reconciliation
from crowdledger.models import (
    Campaign,
    Milestone,
    MilestoneStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from crowdledger.utils.audit import log_audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSummary:
    campaign_id: int
    goal_amount: int
    amount_raised: int
    recomputed_raised: int
    paid_out: int
    available_balance: int

    @property
    def consistent(self) -> bool:
        return self.amount_raised == self.recomputed_raised


def lock_campaign(db: Session, campaign_id: int) -> Campaign:
    """Re-read a campaign row under ``FOR UPDATE``."""

    stmt = (
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    campaign = db.scalars(stmt).one_or_none()
    if campaign is None:
        raise NotFoundError("Campaign not found.", code="CAMPAIGN_NOT_FOUND", details={"campaign_id": campaign_id})
    return campaign


def lock_milestone(db: Session, milestone_id: int) -> Milestone:
    """Re-read a milestone row under ``FOR UPDATE``."""

    stmt = (
        select(Milestone)
        .where(Milestone.id == milestone_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    milestone = db.scalars(stmt).one_or_none()
    if milestone is None:
        raise NotFoundError(
            "Milestone not found.", code="MILESTONE_NOT_FOUND", details={"milestone_id": milestone_id}
        )
    return milestone


def _sum_completed(db: Session, campaign_id: int, tx_type: TransactionType) -> int:
    stmt = (
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.campaign_id == campaign_id)
        .where(Transaction.type == tx_type)
        .where(Transaction.status == TransactionStatus.COMPLETED)
    )
    return int(db.scalar(stmt) or 0)


def completed_donations_total(db: Session, campaign_id: int) -> int:
    """Sum of COMPLETED DONATION transactions; the source of truth for amount_raised."""

    return _sum_completed(db, campaign_id, TransactionType.DONATION)


def completed_payouts_total(db: Session, campaign_id: int) -> int:
    return _sum_completed(db, campaign_id, TransactionType.PAYOUT)


def available_balance(db: Session, campaign: Campaign) -> int:
    """Raised funds not yet paid out."""

    return int(campaign.amount_raised) - completed_payouts_total(db, campaign.id)


def campaign_ledger(db: Session, campaign_id: int) -> LedgerSummary:
    campaign = db.get(Campaign, campaign_id, populate_existing=True)
    if campaign is None:
        raise NotFoundError("Campaign not found.", code="CAMPAIGN_NOT_FOUND", details={"campaign_id": campaign_id})
    paid_out = completed_payouts_total(db, campaign.id)
    return LedgerSummary(
        campaign_id=campaign.id,
        goal_amount=int(campaign.goal_amount),
        amount_raised=int(campaign.amount_raised),
        recomputed_raised=completed_donations_total(db, campaign.id),
        paid_out=paid_out,
        available_balance=int(campaign.amount_raised) - paid_out,
    )


def get_transaction(db: Session, transaction_id: int) -> Transaction:
    transaction = db.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(
            "Transaction not found.", code="TRANSACTION_NOT_FOUND", details={"transaction_id": transaction_id}
        )
    return transaction


def list_transactions(db: Session, campaign_id: int) -> list[Transaction]:
    stmt = select(Transaction).where(Transaction.campaign_id == campaign_id).order_by(Transaction.id)
    return list(db.scalars(stmt).all())


def reconcile_paid_milestones(db: Session) -> int:
    """Mark milestones PAID when a COMPLETED PAYOUT transaction references them.

    Returns the number of milestones repaired.
    """

    paid_ids = (
        select(Transaction.milestone_id)
        .where(Transaction.type == TransactionType.PAYOUT)
        .where(Transaction.status == TransactionStatus.COMPLETED)
        .where(Transaction.milestone_id.is_not(None))
    )
    stmt = (
        select(Milestone)
        .where(Milestone.id.in_(paid_ids))
        .where(Milestone.status != MilestoneStatus.PAID)
        .with_for_update()
    )
    repaired = 0
    for milestone in db.scalars(stmt).all():
        logger.warning(
            "Milestone status behind its payout transaction; marking PAID",
            extra={"milestone_id": milestone.id, "previous_status": milestone.status.value},
        )
        log_audit(
            db,
            actor="system:reconcile",
            action="MILESTONE_PAID_RECONCILED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"previous_status": milestone.status.value},
        )
        # The payout transaction is authoritative, so this bypasses the transition table.
        milestone.status = MilestoneStatus.PAID
        milestone.is_active = False
        repaired += 1
    db.commit()
    return repaired


def reconcile_campaign_totals(db: Session) -> int:
    """Recompute every campaign's amount_raised from its donation transactions.

    Returns the number of campaigns whose stored counter had drifted.
    """

    totals = (
        select(
            Transaction.campaign_id,
            func.coalesce(func.sum(Transaction.amount), 0).label("total"),
        )
        .where(Transaction.type == TransactionType.DONATION)
        .where(Transaction.status == TransactionStatus.COMPLETED)
        .group_by(Transaction.campaign_id)
    )
    expected = {campaign_id: int(total) for campaign_id, total in db.execute(totals).all()}

    drifted = 0
    for campaign_id, stored in db.execute(select(Campaign.id, Campaign.amount_raised)).all():
        target = expected.get(campaign_id, 0)
        if int(stored) == target:
            continue
        logger.warning(
            "Campaign amount_raised drifted from ledger; repairing",
            extra={"campaign_id": campaign_id, "stored": int(stored), "expected": target},
        )
        db.execute(update(Campaign).where(Campaign.id == campaign_id).values(amount_raised=target))
        log_audit(
            db,
            actor="system:reconcile",
            action="CAMPAIGN_TOTAL_RECONCILED",
            entity="Campaign",
            entity_id=campaign_id,
            data={"stored": int(stored), "expected": target},
        )
        drifted += 1
    db.commit()
    return drifted


def reconcile_ledger_once() -> dict[str, int]:
    """Run every reconciliation pass in a fresh session."""

    session = db_module.get_sessionmaker()()
    try:
        summary = {
            "milestones_repaired": reconcile_paid_milestones(session),
            "campaigns_repaired": reconcile_campaign_totals(session),
        }
    except Exception:
        session.rollback()
        logger.exception("Ledger reconciliation failed")
        raise
    finally:
        session.close()
    record_reconciliation(summary)
    logger.info("Ledger reconciliation finished", extra=summary)
    return summary


__all__ = [
    "LedgerSummary",
    "available_balance",
    "campaign_ledger",
    "completed_donations_total",
    "completed_payouts_total",
    "get_transaction",
    "list_transactions",
    "lock_campaign",
    "lock_milestone",
    "reconcile_campaign_totals",
    "reconcile_ledger_once",
    "reconcile_paid_milestones",
]
