"""User endpoints."""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from crowdledger.db import get_db
from crowdledger.models.user import User, UserRole
from crowdledger.schemas.user import UserCreate, UserRead, UserUpdate
from crowdledger.security import get_current_user, require_role
from crowdledger.services import users as users_service
from crowdledger.utils.audit import actor_for_user

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, db: Session = Depends(get_db)) -> User:
    """Register a new user."""

    return users_service.create_user(db, payload)


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
) -> User:
    return users_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_user),
) -> User:
    """Edit a profile; users edit their own, admins edit anyone's."""

    return users_service.update_user(db, actor, user_id, payload)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.Admin)),
) -> Response:
    users_service.delete_user(db, user_id, actor=actor_for_user(admin))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
