"""Transaction schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from crowdledger.models.transaction import TransactionStatus, TransactionType


class TransactionRead(BaseModel):
    id: int
    type: TransactionType
    amount: int
    status: TransactionStatus
    user_id: int
    campaign_id: int
    milestone_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
