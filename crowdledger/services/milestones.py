"""Milestone management: creation, edits, deletion and proof submission."""
import logging

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from crowdledger.core.errors import NotFoundError, StateError, ValidationError
from crowdledger.db import atomic
from crowdledger.models import (
    CampaignStatus,
    Milestone,
    MilestoneStatus,
    MilestoneVote,
    Transaction,
    User,
)
from crowdledger.schemas.milestone import MilestoneCreate, MilestoneUpdate
from crowdledger.services.campaigns import activate_next_milestone, get_campaign, require_owner
from crowdledger.services.ledger import lock_campaign, lock_milestone
from crowdledger.services.lifecycle import transition
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.utils.audit import actor_for_user, log_audit

logger = logging.getLogger(__name__)

_CLOSED_CAMPAIGN = (CampaignStatus.REJECTED, CampaignStatus.COMPLETED)


def get_milestone(db: Session, milestone_id: int) -> Milestone:
    milestone = db.get(Milestone, milestone_id)
    if milestone is None:
        raise NotFoundError(
            "Milestone not found.", code="MILESTONE_NOT_FOUND", details={"milestone_id": milestone_id}
        )
    return milestone


def list_milestones(db: Session, campaign_id: int) -> list[Milestone]:
    get_campaign(db, campaign_id)
    stmt = select(Milestone).where(Milestone.campaign_id == campaign_id).order_by(Milestone.id)
    return list(db.scalars(stmt).all())


@retry_on_disconnect
def create_milestone(db: Session, actor: User, campaign_id: int, payload: MilestoneCreate) -> Milestone:
    """Add a PENDING milestone to a campaign owned by ``actor``."""

    if payload.amount <= 0:
        raise ValidationError("Milestone amount must be positive.", code="INVALID_AMOUNT")

    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        require_owner(campaign, actor)
        if campaign.status in _CLOSED_CAMPAIGN:
            raise StateError(
                f"Cannot add milestones to a {campaign.status.value} campaign.", code="CAMPAIGN_CLOSED"
            )
        milestone = Milestone(
            title=payload.title,
            description=payload.description,
            amount=payload.amount,
            status=MilestoneStatus.PENDING,
            campaign_id=campaign.id,
        )
        db.add(milestone)
        db.flush()
        if campaign.status == CampaignStatus.APPROVED:
            activate_next_milestone(db, campaign.id)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="MILESTONE_CREATED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"campaign_id": campaign.id, "amount": milestone.amount},
        )
    db.refresh(milestone)
    logger.info("Milestone created", extra={"milestone_id": milestone.id, "campaign_id": campaign_id})
    return milestone


@retry_on_disconnect
def update_milestone(db: Session, actor: User, milestone_id: int, payload: MilestoneUpdate) -> Milestone:
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No valid fields provided for update.", code="EMPTY_UPDATE")

    with atomic(db):
        milestone = lock_milestone(db, milestone_id)
        require_owner(milestone.campaign, actor)
        if milestone.status != MilestoneStatus.PENDING:
            raise StateError(
                f"Cannot edit a milestone in status {milestone.status.value}.", code="MILESTONE_LOCKED"
            )
        for field, value in changes.items():
            setattr(milestone, field, value)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="MILESTONE_UPDATED",
            entity="Milestone",
            entity_id=milestone.id,
            data=changes,
        )
    db.refresh(milestone)
    return milestone


@retry_on_disconnect
def delete_milestone(db: Session, actor: User, milestone_id: int) -> None:
    """Delete a PENDING milestone with no votes or transactions."""

    with atomic(db):
        milestone = lock_milestone(db, milestone_id)
        campaign = milestone.campaign
        require_owner(campaign, actor, allow_admin=True)
        has_votes = db.scalar(select(exists().where(MilestoneVote.milestone_id == milestone.id)))
        has_transactions = db.scalar(select(exists().where(Transaction.milestone_id == milestone.id)))
        if milestone.status != MilestoneStatus.PENDING or has_votes or has_transactions:
            raise StateError(
                "Only PENDING milestones without votes or transactions can be deleted.", code="HAS_DEPENDENTS"
            )
        db.delete(milestone)
        db.flush()
        if campaign.status == CampaignStatus.APPROVED:
            activate_next_milestone(db, campaign.id)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="MILESTONE_DELETED",
            entity="Milestone",
            entity_id=milestone_id,
            data={"campaign_id": campaign.id},
        )
    logger.info("Milestone deleted", extra={"milestone_id": milestone_id})


@retry_on_disconnect
def submit_milestone(db: Session, actor: User, milestone_id: int, proof_url: str) -> Milestone:
    """Attach proof of completion and open the milestone for voting."""

    proof_url = (proof_url or "").strip()
    if not proof_url:
        raise ValidationError("A proof URL is required.", code="PROOF_REQUIRED")

    with atomic(db):
        milestone = lock_milestone(db, milestone_id)
        campaign = milestone.campaign
        require_owner(campaign, actor)
        if campaign.status != CampaignStatus.APPROVED:
            raise StateError("Campaign must be APPROVED before milestones are submitted.", code="CAMPAIGN_NOT_APPROVED")
        transition(milestone, MilestoneStatus.SUBMITTED)
        milestone.proof_url = proof_url
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="MILESTONE_SUBMITTED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"proof_url": proof_url},
        )
    db.refresh(milestone)
    logger.info("Milestone submitted", extra={"milestone_id": milestone.id})
    return milestone


__all__ = [
    "create_milestone",
    "delete_milestone",
    "get_milestone",
    "list_milestones",
    "submit_milestone",
    "update_milestone",
]
