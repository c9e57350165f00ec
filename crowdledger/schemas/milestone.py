"""Schemas for milestone entities and votes."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from crowdledger.models.milestone import MilestoneStatus


class MilestoneCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    amount: int = Field(gt=0)


class MilestoneUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    amount: int | None = Field(default=None, gt=0)


class MilestoneSubmit(BaseModel):
    proof_url: str = Field(min_length=1, max_length=1024)


class MilestoneRead(BaseModel):
    id: int
    campaign_id: int
    title: str
    description: str | None
    amount: int
    proof_url: str | None
    status: MilestoneStatus
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VoteCreate(BaseModel):
    approved: bool


class VoteRead(BaseModel):
    id: int
    user_id: int
    milestone_id: int
    approved: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TallyRead(BaseModel):
    milestone_id: int
    status: MilestoneStatus
    approve_count: int
    reject_count: int
    eligible_voters: int

    model_config = ConfigDict(from_attributes=True)
