"""Milestone approval engine: vote upserts, tallies and finalisation.

Two decision rules are supported, selected by ``MILESTONE_DECISION_RULE``:

* ``majority``: once finalised, a milestone is APPROVED when approvals strictly
  outnumber rejections among the votes cast, otherwise REJECTED.
* ``quorum``: a side wins when its votes reach ``MILESTONE_QUORUM_THRESHOLD``
  of the eligible voters. In this mode a vote that tips either side over the
  threshold finalises the milestone immediately.

Eligibility is controlled by ``VOTER_ELIGIBILITY``; with ``campaign_donors``
only Donor-role users who donated to the milestone's campaign may vote. A
campaign owner never votes on their own milestones.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdledger.config import get_settings
from crowdledger.core.errors import NotFoundError, PermissionDeniedError, StateError
from crowdledger.db import atomic
from crowdledger.models import Campaign, Donation, Milestone, MilestoneStatus, MilestoneVote, User, UserRole
from crowdledger.services.campaigns import activate_next_milestone, complete_if_settled
from crowdledger.services.ledger import lock_campaign, lock_milestone
from crowdledger.services.lifecycle import FINAL_MILESTONE_STATES, transition
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.utils.audit import log_audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MilestoneTally:
    milestone_id: int
    status: MilestoneStatus
    approve_count: int
    reject_count: int
    eligible_voters: int

    @property
    def total(self) -> int:
        return self.approve_count + self.reject_count


def eligible_voter_count(db: Session, campaign_id: int) -> int:
    """Number of distinct Donor-role users, other than the owner, who gave to a campaign."""

    stmt = (
        select(func.count(func.distinct(Donation.user_id)))
        .join(User, User.id == Donation.user_id)
        .join(Campaign, Campaign.id == Donation.campaign_id)
        .where(
            Donation.campaign_id == campaign_id,
            User.role == UserRole.Donor,
            Donation.user_id != Campaign.user_id,
        )
    )
    return int(db.scalar(stmt) or 0)


def is_eligible_voter(db: Session, user: User, campaign: Campaign) -> bool:
    """Owners never vote on their own milestones; otherwise ``VOTER_ELIGIBILITY`` decides."""

    if user.id == campaign.user_id:
        return False
    if get_settings().VOTER_ELIGIBILITY == "any_user":
        return True
    if user.role != UserRole.Donor:
        return False
    stmt = select(Donation.id).where(Donation.user_id == user.id, Donation.campaign_id == campaign.id).limit(1)
    return db.scalar(stmt) is not None


def _count_votes(db: Session, milestone: Milestone) -> MilestoneTally:
    stmt = select(
        func.coalesce(func.sum(case((MilestoneVote.approved.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(case((MilestoneVote.approved.is_(False), 1), else_=0)), 0),
    ).where(MilestoneVote.milestone_id == milestone.id)
    approve_count, reject_count = db.execute(stmt).one()
    return MilestoneTally(
        milestone_id=milestone.id,
        status=milestone.status,
        approve_count=int(approve_count),
        reject_count=int(reject_count),
        eligible_voters=eligible_voter_count(db, milestone.campaign_id),
    )


def tally_votes(db: Session, milestone_id: int) -> MilestoneTally:
    milestone = db.get(Milestone, milestone_id, populate_existing=True)
    if milestone is None:
        raise NotFoundError(
            "Milestone not found.", code="MILESTONE_NOT_FOUND", details={"milestone_id": milestone_id}
        )
    return _count_votes(db, milestone)


def decide(tally: MilestoneTally) -> MilestoneStatus | None:
    """Apply the configured decision rule; ``None`` means undecided."""

    settings = get_settings()
    if settings.MILESTONE_DECISION_RULE == "quorum":
        denominator = max(tally.eligible_voters, tally.total)
        if denominator == 0:
            return None
        if tally.approve_count / denominator >= settings.MILESTONE_QUORUM_THRESHOLD:
            return MilestoneStatus.APPROVED
        if tally.reject_count / denominator >= settings.MILESTONE_QUORUM_THRESHOLD:
            return MilestoneStatus.REJECTED
        return None

    if tally.total == 0:
        return None
    if tally.approve_count > tally.reject_count:
        return MilestoneStatus.APPROVED
    return MilestoneStatus.REJECTED


def _apply_decision(
    db: Session, milestone: Milestone, tally: MilestoneTally, outcome: MilestoneStatus, *, actor: str
) -> MilestoneTally:
    transition(milestone, outcome)
    db.flush()
    if outcome == MilestoneStatus.REJECTED:
        campaign = lock_campaign(db, milestone.campaign_id)
        activate_next_milestone(db, campaign.id)
        complete_if_settled(db, campaign, actor=actor)
    log_audit(
        db,
        actor=actor,
        action=f"MILESTONE_{outcome.value}",
        entity="Milestone",
        entity_id=milestone.id,
        data={
            "approve_count": tally.approve_count,
            "reject_count": tally.reject_count,
            "eligible_voters": tally.eligible_voters,
            "rule": get_settings().MILESTONE_DECISION_RULE,
        },
    )
    logger.info(
        "Milestone finalised",
        extra={
            "milestone_id": milestone.id,
            "status": outcome.value,
            "approve_count": tally.approve_count,
            "reject_count": tally.reject_count,
        },
    )
    return MilestoneTally(
        milestone_id=tally.milestone_id,
        status=outcome,
        approve_count=tally.approve_count,
        reject_count=tally.reject_count,
        eligible_voters=tally.eligible_voters,
    )


def _upsert_vote(db: Session, user_id: int, milestone_id: int, approved: bool) -> tuple[MilestoneVote, bool]:
    stmt = select(MilestoneVote).where(
        MilestoneVote.user_id == user_id, MilestoneVote.milestone_id == milestone_id
    )
    vote = db.scalars(stmt).one_or_none()
    if vote is not None:
        vote.approved = approved
        db.flush()
        return vote, False

    vote = MilestoneVote(user_id=user_id, milestone_id=milestone_id, approved=approved)
    db.add(vote)
    db.flush()
    return vote, True


@retry_on_disconnect
def _vote_unit(db: Session, user_id: int, milestone_id: int, approved: bool) -> tuple[MilestoneVote, bool]:
    with atomic(db):
        voter = db.get(User, user_id)
        if voter is None:
            raise NotFoundError("User not found.", code="USER_NOT_FOUND", details={"user_id": user_id})
        milestone = lock_milestone(db, milestone_id)
        if milestone.status != MilestoneStatus.SUBMITTED:
            raise StateError(
                f"Milestone is {milestone.status.value} and is not open for voting.",
                code="VOTING_CLOSED",
                details={"status": milestone.status.value},
            )
        if not is_eligible_voter(db, voter, milestone.campaign):
            raise PermissionDeniedError(
                "Only donors to this campaign, other than its owner, may vote on its milestones.",
                code="NOT_ELIGIBLE_TO_VOTE",
            )

        vote, created = _upsert_vote(db, user_id, milestone.id, approved)
        log_audit(
            db,
            actor=f"user:{user_id}",
            action="VOTE_CAST" if created else "VOTE_CHANGED",
            entity="MilestoneVote",
            entity_id=vote.id,
            data={"milestone_id": milestone.id, "approved": approved},
        )

        if get_settings().MILESTONE_DECISION_RULE == "quorum":
            tally = _count_votes(db, milestone)
            outcome = decide(tally)
            if outcome is not None:
                _apply_decision(db, milestone, tally, outcome, actor="system:quorum")

    return vote, created


def cast_vote(db: Session, user_id: int, milestone_id: int, approved: bool) -> MilestoneVote:
    """Record or overwrite ``user_id``'s vote on a SUBMITTED milestone."""

    try:
        vote, created = _vote_unit(db, user_id, milestone_id, approved)
    except IntegrityError:
        # A concurrent first vote by the same user won the unique constraint.
        vote, created = _vote_unit(db, user_id, milestone_id, approved)

    db.refresh(vote)
    logger.info(
        "Vote recorded",
        extra={"milestone_id": milestone_id, "user_id": user_id, "approved": approved, "created": created},
    )
    return vote


@retry_on_disconnect
def finalize_milestone(db: Session, milestone_id: int, *, actor: str = "system") -> MilestoneTally:
    """Decide a SUBMITTED milestone; repeat calls return the stored outcome unchanged."""

    with atomic(db):
        milestone = lock_milestone(db, milestone_id)
        tally = _count_votes(db, milestone)
        if milestone.status in FINAL_MILESTONE_STATES:
            return tally
        if milestone.status != MilestoneStatus.SUBMITTED:
            raise StateError(
                f"Milestone is {milestone.status.value}; only SUBMITTED milestones can be finalised.",
                code="MILESTONE_NOT_SUBMITTED",
            )
        if tally.total == 0:
            raise StateError("Milestone has no votes yet.", code="NO_VOTES")
        outcome = decide(tally)
        if outcome is None:
            raise StateError(
                "Quorum not reached.",
                code="QUORUM_NOT_REACHED",
                details={
                    "approve_count": tally.approve_count,
                    "reject_count": tally.reject_count,
                    "eligible_voters": tally.eligible_voters,
                },
            )
        return _apply_decision(db, milestone, tally, outcome, actor=actor)


__all__ = [
    "MilestoneTally",
    "cast_vote",
    "decide",
    "eligible_voter_count",
    "finalize_milestone",
    "is_eligible_voter",
    "tally_votes",
]
