"""Campaign funding engine: donations and the raised-amount counter."""
import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crowdledger.config import get_settings
from crowdledger.core.errors import ConflictError, ConnectivityError, NotFoundError, StateError, ValidationError
from crowdledger.db import atomic
from crowdledger.models import (
    Campaign,
    CampaignStatus,
    Donation,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from crowdledger.services.campaigns import stop_donations
from crowdledger.services.ledger import completed_donations_total, lock_campaign
from crowdledger.services.lifecycle import transition
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.utils.audit import log_audit

logger = logging.getLogger(__name__)

# Client keys are stored as "donation:<donor_id>:<key>" in a 128-character column.
MAX_CLIENT_KEY_LENGTH = 96


@dataclass(frozen=True)
class DonationReceipt:
    donation: Donation
    transaction: Transaction
    amount_raised: int
    goal_reached: bool


def _validate_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Donation amount must be an integer.", code="INVALID_AMOUNT")
    if amount <= 0:
        raise ValidationError("Donation amount must be positive.", code="INVALID_AMOUNT", details={"amount": amount})
    return amount


def _by_key(db: Session, model, key: str):
    return db.scalars(select(model).where(model.idempotency_key == key).limit(1)).first()


def donation_key(donor_id: int, client_key: str) -> str:
    """Scope a client-supplied idempotency key to its donor."""

    return f"donation:{donor_id}:{client_key}"


def _replay(db: Session, stored_key: str, campaign_id: int, amount: int) -> DonationReceipt | None:
    donation = _by_key(db, Donation, stored_key)
    if donation is None:
        return None
    if donation.campaign_id != campaign_id or int(donation.amount) != amount:
        raise ConflictError(
            "Idempotency key was already used for a different donation.",
            code="IDEMPOTENCY_KEY_CONFLICT",
            details={"campaign_id": donation.campaign_id, "amount": int(donation.amount)},
        )
    transaction = _by_key(db, Transaction, stored_key)
    campaign = db.get(Campaign, donation.campaign_id, populate_existing=True)
    if transaction is None or campaign is None:
        raise StateError(
            "Idempotency key is bound to an incomplete donation.",
            code="IDEMPOTENCY_KEY_CONFLICT",
        )
    logger.info("Idempotent donation reused", extra={"donation_id": donation.id, "idem": stored_key})
    return DonationReceipt(
        donation=donation,
        transaction=transaction,
        amount_raised=int(campaign.amount_raised),
        goal_reached=campaign.amount_raised >= campaign.goal_amount,
    )


def _apply_increment(db: Session, campaign_id: int, amount: int) -> int:
    """Atomically add ``amount`` to the campaign counter and return the new total."""

    db.execute(
        update(Campaign)
        .where(Campaign.id == campaign_id)
        .values(amount_raised=Campaign.amount_raised + amount)
        .execution_options(synchronize_session=False)
    )
    return int(db.scalar(select(Campaign.amount_raised).where(Campaign.id == campaign_id)))


@retry_on_disconnect
def _donation_unit(
    db: Session, donor_id: int, campaign_id: int, amount: int, idempotency_key: str | None
) -> DonationReceipt:
    with atomic(db):
        if db.get(User, donor_id) is None:
            raise NotFoundError("Donor not found.", code="USER_NOT_FOUND", details={"user_id": donor_id})
        campaign = lock_campaign(db, campaign_id)
        if campaign.status != CampaignStatus.APPROVED or not campaign.is_active:
            raise StateError(
                "Campaign is not accepting donations.",
                code="CAMPAIGN_NOT_ACCEPTING_DONATIONS",
                details={"status": campaign.status.value, "is_active": campaign.is_active},
            )
        previous_total = int(campaign.amount_raised)

        donation = Donation(
            amount=amount, user_id=donor_id, campaign_id=campaign.id, idempotency_key=idempotency_key
        )
        transaction = Transaction(
            type=TransactionType.DONATION,
            amount=amount,
            status=TransactionStatus.PENDING,
            user_id=donor_id,
            campaign_id=campaign.id,
            milestone_id=None,
            idempotency_key=idempotency_key,
        )
        db.add_all([donation, transaction])
        db.flush()

        new_total = _apply_increment(db, campaign.id, amount)
        transition(transaction, TransactionStatus.COMPLETED)
        db.refresh(campaign)

        goal_reached = new_total >= campaign.goal_amount
        log_audit(
            db,
            actor=f"user:{donor_id}",
            action="DONATION_RECORDED",
            entity="Donation",
            entity_id=donation.id,
            data={
                "campaign_id": campaign.id,
                "amount": amount,
                "transaction_id": transaction.id,
                "amount_raised": new_total,
            },
        )
        if goal_reached and previous_total < campaign.goal_amount:
            log_audit(
                db,
                actor="system",
                action="CAMPAIGN_GOAL_REACHED",
                entity="Campaign",
                entity_id=campaign.id,
                data={"goal_amount": int(campaign.goal_amount), "amount_raised": new_total},
            )
            logger.info(
                "Campaign goal reached",
                extra={"campaign_id": campaign.id, "goal_amount": int(campaign.goal_amount), "amount_raised": new_total},
            )
            if get_settings().CAMPAIGN_COMPLETION_POLICY == "goal_met":
                stop_donations(db, campaign, reason="goal_met")

    return DonationReceipt(
        donation=donation, transaction=transaction, amount_raised=new_total, goal_reached=goal_reached
    )


def _record_failed_attempt(db: Session, donor_id: int, campaign_id: int, amount: int) -> None:
    """Leave a FAILED DONATION transaction behind for a donation that could not be applied."""

    try:
        with atomic(db):
            failed = Transaction(
                type=TransactionType.DONATION,
                amount=amount,
                status=TransactionStatus.PENDING,
                user_id=donor_id,
                campaign_id=campaign_id,
            )
            db.add(failed)
            db.flush()
            transition(failed, TransactionStatus.FAILED)
            log_audit(
                db,
                actor="system",
                action="DONATION_FAILED",
                entity="Transaction",
                entity_id=failed.id,
                data={"campaign_id": campaign_id, "user_id": donor_id, "amount": amount},
            )
    except SQLAlchemyError:
        logger.exception(
            "Could not record failed donation attempt",
            extra={"campaign_id": campaign_id, "user_id": donor_id, "amount": amount},
        )


def record_donation(
    db: Session,
    donor_id: int,
    campaign_id: int,
    amount: int,
    *,
    idempotency_key: str | None = None,
) -> DonationReceipt:
    """Record a donation and apply it to the campaign's raised amount.

    The donation row, its DONATION transaction and the counter increment are
    committed together or not at all. A store failure after validation leaves
    a FAILED transaction for the attempt and re-raises.
    """

    _validate_amount(amount)
    stored_key = None
    if idempotency_key is not None:
        client_key = idempotency_key.strip()
        if not client_key:
            raise ValidationError("Idempotency key must not be blank.", code="IDEMPOTENCY_KEY_REQUIRED")
        if len(client_key) > MAX_CLIENT_KEY_LENGTH:
            raise ValidationError(
                f"Idempotency key must be at most {MAX_CLIENT_KEY_LENGTH} characters.",
                code="IDEMPOTENCY_KEY_TOO_LONG",
            )
        stored_key = donation_key(donor_id, client_key)
        replay = _replay(db, stored_key, campaign_id, amount)
        if replay is not None:
            return replay

    try:
        receipt = _donation_unit(db, donor_id, campaign_id, amount, stored_key)
    except IntegrityError:
        if stored_key is not None:
            replay = _replay(db, stored_key, campaign_id, amount)
            if replay is not None:
                logger.info("Idempotent donation reused after race", extra={"idem": stored_key})
                return replay
        _record_failed_attempt(db, donor_id, campaign_id, amount)
        raise
    except (SQLAlchemyError, ConnectivityError):
        logger.exception(
            "Donation failed in the store", extra={"campaign_id": campaign_id, "user_id": donor_id, "amount": amount}
        )
        _record_failed_attempt(db, donor_id, campaign_id, amount)
        raise

    logger.info(
        "Donation recorded",
        extra={
            "donation_id": receipt.donation.id,
            "campaign_id": campaign_id,
            "amount": amount,
            "amount_raised": receipt.amount_raised,
        },
    )
    return receipt


def list_donations(db: Session, campaign_id: int) -> list[Donation]:
    stmt = select(Donation).where(Donation.campaign_id == campaign_id).order_by(Donation.id)
    return list(db.scalars(stmt).all())


def recompute_amount_raised(db: Session, campaign_id: int) -> int:
    """Rebuild the campaign counter from its COMPLETED DONATION transactions."""

    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        expected = completed_donations_total(db, campaign.id)
        if int(campaign.amount_raised) != expected:
            logger.warning(
                "Campaign amount_raised drifted from ledger; repairing",
                extra={"campaign_id": campaign.id, "stored": int(campaign.amount_raised), "expected": expected},
            )
            log_audit(
                db,
                actor="system:reconcile",
                action="CAMPAIGN_TOTAL_RECONCILED",
                entity="Campaign",
                entity_id=campaign.id,
                data={"stored": int(campaign.amount_raised), "expected": expected},
            )
            campaign.amount_raised = expected
    return expected


__all__ = ["DonationReceipt", "list_donations", "record_donation", "recompute_amount_raised"]
