"""Campaign and donation schemas."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from crowdledger.models.campaign import CampaignStatus
from crowdledger.schemas.transaction import TransactionRead


class CampaignCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    goal_amount: int = Field(gt=0)


class CampaignUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    goal_amount: int | None = Field(default=None, gt=0)


class CampaignReview(BaseModel):
    status: Literal["APPROVED", "REJECTED"]


class CampaignRead(BaseModel):
    id: int
    title: str
    description: str
    is_active: bool
    status: CampaignStatus
    goal_amount: int
    amount_raised: int
    user_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CampaignOverview(CampaignRead):
    approved_milestones: int
    total_milestones: int
    percentage_raised: int


class LedgerSummaryRead(BaseModel):
    campaign_id: int
    goal_amount: int
    amount_raised: int
    recomputed_raised: int
    paid_out: int
    available_balance: int
    consistent: bool

    model_config = ConfigDict(from_attributes=True)


class DonationCreate(BaseModel):
    amount: int = Field(gt=0)


class DonationRead(BaseModel):
    id: int
    amount: int
    user_id: int
    campaign_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonationReceiptRead(BaseModel):
    donation: DonationRead
    transaction: TransactionRead
    amount_raised: int
    goal_reached: bool

    model_config = ConfigDict(from_attributes=True)
