"""Campaign services: creation, review, completion and deletion."""
import logging
from dataclasses import dataclass

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from crowdledger.config import get_settings
from crowdledger.core.errors import NotFoundError, PermissionDeniedError, StateError, ValidationError
from crowdledger.db import atomic
from crowdledger.models import (
    Campaign,
    CampaignStatus,
    Donation,
    Milestone,
    MilestoneStatus,
    Transaction,
    User,
    UserRole,
)
from crowdledger.schemas.campaign import CampaignCreate, CampaignUpdate
from crowdledger.services.ledger import lock_campaign
from crowdledger.services.lifecycle import SETTLED_MILESTONE_STATES, transition
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.services.users import require_role
from crowdledger.utils.audit import actor_for_user, log_audit

logger = logging.getLogger(__name__)

_LOCKED_FOR_EDIT = (CampaignStatus.APPROVED, CampaignStatus.COMPLETED)


@dataclass(frozen=True)
class CampaignOverview:
    campaign: Campaign
    approved_milestones: int
    total_milestones: int

    @property
    def percentage_raised(self) -> int:
        goal = int(self.campaign.goal_amount)
        if goal <= 0:
            return 0
        return int(self.campaign.amount_raised) * 100 // goal


def get_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError("Campaign not found.", code="CAMPAIGN_NOT_FOUND", details={"campaign_id": campaign_id})
    return campaign


def require_owner(campaign: Campaign, actor: User, *, allow_admin: bool = False) -> None:
    if campaign.user_id == actor.id:
        return
    if allow_admin and actor.role == UserRole.Admin:
        return
    raise PermissionDeniedError("Only the campaign owner may do this.", code="NOT_CAMPAIGN_OWNER")


def list_campaigns(
    db: Session,
    *,
    status: CampaignStatus | None = None,
    user_id: int | None = None,
    donor_id: int | None = None,
) -> list[CampaignOverview]:
    """Return campaigns newest first with milestone progress counters.

    ``user_id`` filters by owner, ``donor_id`` to campaigns that user donated to.
    """

    approved_count = (
        select(func.count(Milestone.id))
        .where(Milestone.campaign_id == Campaign.id)
        .where(Milestone.status.in_([MilestoneStatus.APPROVED, MilestoneStatus.PAID]))
        .scalar_subquery()
    )
    total_count = select(func.count(Milestone.id)).where(Milestone.campaign_id == Campaign.id).scalar_subquery()

    stmt = select(Campaign, approved_count, total_count).order_by(Campaign.created_at.desc(), Campaign.id.desc())
    if status is not None:
        stmt = stmt.where(Campaign.status == status)
    if user_id is not None:
        stmt = stmt.where(Campaign.user_id == user_id)
    if donor_id is not None:
        stmt = stmt.where(
            exists().where(Donation.campaign_id == Campaign.id, Donation.user_id == donor_id)
        )

    return [
        CampaignOverview(campaign=campaign, approved_milestones=approved or 0, total_milestones=total or 0)
        for campaign, approved, total in db.execute(stmt).all()
    ]


@retry_on_disconnect
def create_campaign(db: Session, owner: User, payload: CampaignCreate) -> Campaign:
    """Create a PENDING campaign owned by a campaign creator."""

    require_role(owner, UserRole.CampaignCreator)
    if payload.goal_amount <= 0:
        raise ValidationError("goal_amount must be positive.", code="INVALID_GOAL")

    with atomic(db):
        campaign = Campaign(
            title=payload.title,
            description=payload.description,
            goal_amount=payload.goal_amount,
            amount_raised=0,
            is_active=True,
            status=CampaignStatus.PENDING,
            user_id=owner.id,
        )
        db.add(campaign)
        db.flush()
        log_audit(
            db,
            actor=actor_for_user(owner),
            action="CAMPAIGN_CREATED",
            entity="Campaign",
            entity_id=campaign.id,
            data={"goal_amount": campaign.goal_amount, "status": campaign.status.value},
        )
    db.refresh(campaign)
    logger.info("Campaign created", extra={"campaign_id": campaign.id, "owner_id": owner.id})
    return campaign


@retry_on_disconnect
def update_campaign(db: Session, actor: User, campaign_id: int, payload: CampaignUpdate) -> Campaign:
    """Edit title, description or goal while the campaign is still under review."""

    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No valid fields provided for update.", code="EMPTY_UPDATE")

    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        require_owner(campaign, actor)
        if campaign.status in _LOCKED_FOR_EDIT:
            raise StateError(
                f"Cannot update a campaign in status {campaign.status.value}.", code="CAMPAIGN_LOCKED"
            )
        for field, value in changes.items():
            setattr(campaign, field, value)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="CAMPAIGN_UPDATED",
            entity="Campaign",
            entity_id=campaign.id,
            data=changes,
        )
    db.refresh(campaign)
    logger.info("Campaign updated", extra={"campaign_id": campaign.id, "fields": sorted(changes)})
    return campaign


def activate_next_milestone(db: Session, campaign_id: int) -> Milestone | None:
    """Flag the earliest milestone that is neither PAID nor REJECTED as the current one."""

    milestones = list(
        db.scalars(select(Milestone).where(Milestone.campaign_id == campaign_id).order_by(Milestone.id)).all()
    )
    current = next((m for m in milestones if m.status not in SETTLED_MILESTONE_STATES), None)
    for milestone in milestones:
        milestone.is_active = milestone is current
    return current


def complete_if_settled(db: Session, campaign: Campaign, *, actor: str = "system") -> bool:
    """Complete an APPROVED campaign whose milestones are all settled, at least one of them PAID.

    A campaign whose milestones were all rejected stays open so its owner can
    add replacement milestones for the funds raised. Does nothing under the
    ``manual`` completion policy.
    """

    if get_settings().CAMPAIGN_COMPLETION_POLICY == "manual" or campaign.status != CampaignStatus.APPROVED:
        return False
    statuses = db.scalars(select(Milestone.status).where(Milestone.campaign_id == campaign.id)).all()
    if not statuses or MilestoneStatus.PAID not in statuses:
        return False
    if any(status not in SETTLED_MILESTONE_STATES for status in statuses):
        return False
    close_campaign(db, campaign, actor=actor, reason="milestones_settled")
    return True


def stop_donations(db: Session, campaign: Campaign, *, reason: str) -> None:
    """Stop accepting donations while milestones keep moving through approval and payout."""

    campaign.is_active = False
    log_audit(
        db,
        actor="system",
        action="CAMPAIGN_DONATIONS_CLOSED",
        entity="Campaign",
        entity_id=campaign.id,
        data={"reason": reason, "amount_raised": int(campaign.amount_raised)},
    )
    logger.info("Campaign stopped accepting donations", extra={"campaign_id": campaign.id, "reason": reason})


@retry_on_disconnect
def review_campaign(db: Session, actor: User, campaign_id: int, status: CampaignStatus) -> Campaign:
    """Admin decision on a PENDING campaign."""

    require_role(actor, UserRole.Admin)
    if status not in (CampaignStatus.APPROVED, CampaignStatus.REJECTED):
        raise ValidationError("Review status must be APPROVED or REJECTED.", code="INVALID_REVIEW_STATUS")

    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        previous = transition(campaign, status)
        first = None
        if status == CampaignStatus.APPROVED:
            first = activate_next_milestone(db, campaign.id)
        else:
            campaign.is_active = False
        log_audit(
            db,
            actor=actor_for_user(actor),
            action=f"CAMPAIGN_{status.value}",
            entity="Campaign",
            entity_id=campaign.id,
            data={"from": previous.value, "to": status.value, "active_milestone_id": getattr(first, "id", None)},
        )
    db.refresh(campaign)
    logger.info("Campaign reviewed", extra={"campaign_id": campaign.id, "status": status.value})
    return campaign


def close_campaign(db: Session, campaign: Campaign, *, actor: str, reason: str) -> None:
    """Move an APPROVED campaign to COMPLETED inside the caller's unit of work."""

    previous = transition(campaign, CampaignStatus.COMPLETED)
    campaign.is_active = False
    log_audit(
        db,
        actor=actor,
        action="CAMPAIGN_COMPLETED",
        entity="Campaign",
        entity_id=campaign.id,
        data={"from": previous.value, "reason": reason},
    )
    logger.info("Campaign completed", extra={"campaign_id": campaign.id, "reason": reason})


@retry_on_disconnect
def complete_campaign(db: Session, actor: User, campaign_id: int) -> Campaign:
    """Manual completion by an admin."""

    require_role(actor, UserRole.Admin)
    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        close_campaign(db, campaign, actor=actor_for_user(actor), reason="manual")
    db.refresh(campaign)
    return campaign


def _has_ledger_rows(db: Session, campaign_id: int) -> bool:
    donations = db.scalar(select(exists().where(Donation.campaign_id == campaign_id)))
    transactions = db.scalar(select(exists().where(Transaction.campaign_id == campaign_id)))
    return bool(donations or transactions)


@retry_on_disconnect
def delete_campaign(db: Session, actor: User, campaign_id: int) -> None:
    """Delete a campaign that never received money, together with its milestones."""

    with atomic(db):
        campaign = lock_campaign(db, campaign_id)
        require_owner(campaign, actor, allow_admin=True)
        if _has_ledger_rows(db, campaign.id):
            raise StateError(
                "Campaign has donations or transactions and cannot be deleted.", code="HAS_DEPENDENTS"
            )
        if any(m.status != MilestoneStatus.PENDING for m in campaign.milestones):
            raise StateError(
                "Campaign has milestones past PENDING and cannot be deleted.", code="HAS_DEPENDENTS"
            )
        db.delete(campaign)
        log_audit(
            db,
            actor=actor_for_user(actor),
            action="CAMPAIGN_DELETED",
            entity="Campaign",
            entity_id=campaign_id,
            data={"status": campaign.status.value},
        )
    logger.info("Campaign deleted", extra={"campaign_id": campaign_id})


__all__ = [
    "CampaignOverview",
    "activate_next_milestone",
    "close_campaign",
    "complete_campaign",
    "complete_if_settled",
    "create_campaign",
    "delete_campaign",
    "get_campaign",
    "list_campaigns",
    "require_owner",
    "stop_donations",
    "review_campaign",
    "update_campaign",
]
