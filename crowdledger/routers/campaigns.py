"""Campaign, donation and ledger endpoints."""
from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from crowdledger.db import get_db
from crowdledger.models.campaign import Campaign, CampaignStatus
from crowdledger.models.donation import Donation
from crowdledger.models.milestone import Milestone
from crowdledger.models.transaction import Transaction
from crowdledger.models.user import User
from crowdledger.schemas.campaign import (
    CampaignCreate,
    CampaignOverview,
    CampaignRead,
    CampaignReview,
    CampaignUpdate,
    DonationCreate,
    DonationRead,
    DonationReceiptRead,
    LedgerSummaryRead,
)
from crowdledger.schemas.milestone import MilestoneCreate, MilestoneRead
from crowdledger.schemas.transaction import TransactionRead
from crowdledger.security import get_current_user
from crowdledger.services import campaigns as campaigns_service
from crowdledger.services import funding as funding_service
from crowdledger.services import ledger as ledger_service
from crowdledger.services import milestones as milestones_service

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


def _overview(item: campaigns_service.CampaignOverview) -> CampaignOverview:
    base = CampaignRead.model_validate(item.campaign).model_dump()
    return CampaignOverview(
        **base,
        approved_milestones=item.approved_milestones,
        total_milestones=item.total_milestones,
        percentage_raised=item.percentage_raised,
    )


@router.post("", response_model=CampaignRead, status_code=status.HTTP_201_CREATED)
def create_campaign(
    payload: CampaignCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Campaign:
    return campaigns_service.create_campaign(db, user, payload)


@router.get("", response_model=list[CampaignOverview])
def list_campaigns(
    status_filter: CampaignStatus | None = Query(default=None, alias="status"),
    user_id: int | None = None,
    donor_id: int | None = None,
    db: Session = Depends(get_db),
) -> list[CampaignOverview]:
    """List campaigns newest first, optionally filtered by status, owner or donor."""

    items = campaigns_service.list_campaigns(db, status=status_filter, user_id=user_id, donor_id=donor_id)
    return [_overview(item) for item in items]


@router.get("/{campaign_id}", response_model=CampaignRead)
def get_campaign(campaign_id: int, db: Session = Depends(get_db)) -> Campaign:
    return campaigns_service.get_campaign(db, campaign_id)


@router.patch("/{campaign_id}", response_model=CampaignRead)
def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Campaign:
    return campaigns_service.update_campaign(db, user, campaign_id, payload)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_campaign(
    campaign_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Response:
    campaigns_service.delete_campaign(db, user, campaign_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{campaign_id}/review", response_model=CampaignRead)
def review_campaign(
    campaign_id: int,
    payload: CampaignReview,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Campaign:
    """Approve or reject a PENDING campaign (Admin only)."""

    return campaigns_service.review_campaign(db, user, campaign_id, CampaignStatus(payload.status))


@router.post("/{campaign_id}/complete", response_model=CampaignRead)
def complete_campaign(
    campaign_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Campaign:
    return campaigns_service.complete_campaign(db, user, campaign_id)


@router.get("/{campaign_id}/ledger", response_model=LedgerSummaryRead)
def campaign_ledger(campaign_id: int, db: Session = Depends(get_db)) -> LedgerSummaryRead:
    return LedgerSummaryRead.model_validate(ledger_service.campaign_ledger(db, campaign_id))


@router.post(
    "/{campaign_id}/donations",
    response_model=DonationReceiptRead,
    status_code=status.HTTP_201_CREATED,
)
def donate(
    campaign_id: int,
    payload: DonationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> DonationReceiptRead:
    """Record a donation by the acting user; replays return the original receipt."""

    receipt = funding_service.record_donation(
        db, user.id, campaign_id, payload.amount, idempotency_key=idempotency_key
    )
    return DonationReceiptRead.model_validate(receipt)


@router.get("/{campaign_id}/donations", response_model=list[DonationRead])
def list_donations(campaign_id: int, db: Session = Depends(get_db)) -> list[Donation]:
    campaigns_service.get_campaign(db, campaign_id)
    return funding_service.list_donations(db, campaign_id)


@router.get("/{campaign_id}/transactions", response_model=list[TransactionRead])
def list_transactions(
    campaign_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
) -> list[Transaction]:
    campaigns_service.get_campaign(db, campaign_id)
    return ledger_service.list_transactions(db, campaign_id)


@router.post(
    "/{campaign_id}/milestones",
    response_model=MilestoneRead,
    status_code=status.HTTP_201_CREATED,
)
def create_milestone(
    campaign_id: int,
    payload: MilestoneCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Milestone:
    return milestones_service.create_milestone(db, user, campaign_id, payload)


@router.get("/{campaign_id}/milestones", response_model=list[MilestoneRead])
def list_milestones(campaign_id: int, db: Session = Depends(get_db)) -> list[Milestone]:
    return milestones_service.list_milestones(db, campaign_id)
