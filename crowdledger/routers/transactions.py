"""Transaction lookup endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crowdledger.db import get_db
from crowdledger.models.transaction import Transaction
from crowdledger.models.user import User
from crowdledger.schemas.transaction import TransactionRead
from crowdledger.security import get_current_user
from crowdledger.services import ledger as ledger_service

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/{transaction_id}", response_model=TransactionRead)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
) -> Transaction:
    return ledger_service.get_transaction(db, transaction_id)
