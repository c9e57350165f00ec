"""Payout engine: release an approved milestone's amount to the campaign owner."""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from crowdledger.config import get_settings
from crowdledger.core.errors import InsufficientFundsError, StateError
from crowdledger.db import atomic
from crowdledger.models import (
    Milestone,
    MilestoneStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from crowdledger.services.campaigns import activate_next_milestone, complete_if_settled
from crowdledger.services.ledger import available_balance, lock_campaign, lock_milestone
from crowdledger.services.lifecycle import transition
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.utils.audit import log_audit

logger = logging.getLogger(__name__)

MARK_PAID_ATTEMPTS = 3


@dataclass(frozen=True)
class PayoutResult:
    milestone: Milestone
    transaction: Transaction
    campaign_completed: bool


def payout_key(milestone_id: int) -> str:
    return f"payout:milestone:{milestone_id}"


def _mark_paid(db: Session, milestone: Milestone) -> None:
    """Move the milestone to PAID inside a savepoint, retrying a few times."""

    for attempt in Retrying(
        stop=stop_after_attempt(MARK_PAID_ATTEMPTS),
        wait=wait_fixed(get_settings().DB_RETRY_BACKOFF_SECONDS),
        retry=retry_if_exception_type(SQLAlchemyError),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "Retrying milestone PAID update",
                    extra={"milestone_id": milestone.id, "attempt": attempt.retry_state.attempt_number},
                )
            with db.begin_nested():
                if milestone.status != MilestoneStatus.PAID:
                    transition(milestone, MilestoneStatus.PAID)
                milestone.is_active = False
                db.flush()


@retry_on_disconnect
def payout_milestone(db: Session, milestone_id: int, *, actor: str = "system") -> PayoutResult:
    """Pay out an APPROVED milestone exactly once.

    The PAYOUT transaction, the PAID status and the audit row commit together.
    A COMPLETED payout per milestone is also enforced by a partial unique index,
    so a concurrent second payout fails instead of double-paying.
    """

    try:
        with atomic(db):
            milestone = lock_milestone(db, milestone_id)
            campaign = lock_campaign(db, milestone.campaign_id)
            if milestone.status == MilestoneStatus.PAID:
                raise StateError("Milestone has already been paid.", code="ALREADY_PAID")
            if milestone.status != MilestoneStatus.APPROVED:
                raise StateError(
                    f"Milestone is {milestone.status.value}; only APPROVED milestones can be paid.",
                    code="MILESTONE_NOT_APPROVED",
                )

            balance = available_balance(db, campaign)
            if balance < milestone.amount:
                logger.warning(
                    "Insufficient campaign balance for payout",
                    extra={"campaign_id": campaign.id, "milestone_id": milestone.id, "balance": balance},
                )
                raise InsufficientFundsError(
                    "Campaign balance does not cover the milestone amount.",
                    details={"available_balance": balance, "amount": int(milestone.amount)},
                )

            transaction = Transaction(
                type=TransactionType.PAYOUT,
                amount=milestone.amount,
                status=TransactionStatus.PENDING,
                user_id=campaign.user_id,
                campaign_id=campaign.id,
                milestone_id=milestone.id,
                idempotency_key=payout_key(milestone.id),
            )
            db.add(transaction)
            db.flush()
            transition(transaction, TransactionStatus.COMPLETED)
            db.flush()

            _mark_paid(db, milestone)
            log_audit(
                db,
                actor=actor,
                action="MILESTONE_PAID",
                entity="Milestone",
                entity_id=milestone.id,
                data={
                    "campaign_id": campaign.id,
                    "transaction_id": transaction.id,
                    "amount": int(milestone.amount),
                    "recipient_id": campaign.user_id,
                },
            )

            activate_next_milestone(db, campaign.id)
            completed = complete_if_settled(db, campaign)
    except IntegrityError as exc:
        logger.warning("Concurrent payout rejected", extra={"milestone_id": milestone_id})
        raise StateError("Milestone has already been paid.", code="ALREADY_PAID") from exc

    db.refresh(milestone)
    db.refresh(transaction)
    logger.info(
        "Milestone paid out",
        extra={
            "milestone_id": milestone.id,
            "transaction_id": transaction.id,
            "amount": int(transaction.amount),
        },
    )
    return PayoutResult(milestone=milestone, transaction=transaction, campaign_completed=completed)


__all__ = ["PayoutResult", "payout_key", "payout_milestone"]
