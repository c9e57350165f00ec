"""Milestone, voting and payout endpoints."""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from crowdledger.db import get_db
from crowdledger.models.milestone import Milestone
from crowdledger.models.transaction import Transaction
from crowdledger.models.user import User, UserRole
from crowdledger.models.vote import MilestoneVote
from crowdledger.schemas.milestone import (
    MilestoneRead,
    MilestoneSubmit,
    MilestoneUpdate,
    TallyRead,
    VoteCreate,
    VoteRead,
)
from crowdledger.schemas.transaction import TransactionRead
from crowdledger.security import get_current_user, require_role
from crowdledger.services import milestones as milestones_service
from crowdledger.services import payouts as payouts_service
from crowdledger.services import voting as voting_service
from crowdledger.utils.audit import actor_for_user

router = APIRouter(prefix="/milestones", tags=["milestones"])


@router.get("/{milestone_id}", response_model=MilestoneRead)
def get_milestone(milestone_id: int, db: Session = Depends(get_db)) -> Milestone:
    return milestones_service.get_milestone(db, milestone_id)


@router.patch("/{milestone_id}", response_model=MilestoneRead)
def update_milestone(
    milestone_id: int,
    payload: MilestoneUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Milestone:
    return milestones_service.update_milestone(db, user, milestone_id, payload)


@router.delete("/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_milestone(
    milestone_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Response:
    milestones_service.delete_milestone(db, user, milestone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{milestone_id}/submit", response_model=MilestoneRead)
def submit_milestone(
    milestone_id: int,
    payload: MilestoneSubmit,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Milestone:
    """Attach proof of completion and open voting."""

    return milestones_service.submit_milestone(db, user, milestone_id, payload.proof_url)


@router.post("/{milestone_id}/votes", response_model=VoteRead)
def cast_vote(
    milestone_id: int,
    payload: VoteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MilestoneVote:
    return voting_service.cast_vote(db, user.id, milestone_id, payload.approved)


@router.get("/{milestone_id}/tally", response_model=TallyRead)
def tally(milestone_id: int, db: Session = Depends(get_db)) -> TallyRead:
    return TallyRead.model_validate(voting_service.tally_votes(db, milestone_id))


@router.post("/{milestone_id}/finalize", response_model=TallyRead)
def finalize_milestone(
    milestone_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.Admin)),
) -> TallyRead:
    tally_result = voting_service.finalize_milestone(db, milestone_id, actor=actor_for_user(admin))
    return TallyRead.model_validate(tally_result)


@router.post("/{milestone_id}/payout", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
def payout_milestone(
    milestone_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.Admin)),
) -> Transaction:
    """Release an APPROVED milestone's amount to the campaign owner."""

    result = payouts_service.payout_milestone(db, milestone_id, actor=actor_for_user(admin))
    return result.transaction
