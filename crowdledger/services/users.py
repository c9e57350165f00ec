"""User services."""
import logging

from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdledger.core.errors import ConflictError, NotFoundError, PermissionDeniedError, StateError, ValidationError
from crowdledger.db import atomic
from crowdledger.models import Campaign, Donation, MilestoneVote, Transaction, User, UserRole
from crowdledger.schemas.user import UserCreate, UserUpdate
from crowdledger.services.retry import retry_on_disconnect
from crowdledger.utils.audit import actor_for_user, log_audit

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found.", code="USER_NOT_FOUND", details={"user_id": user_id})
    return user


def require_role(user: User, *roles: UserRole) -> None:
    """Raise unless ``user`` holds one of ``roles``."""

    if user.role not in roles:
        raise PermissionDeniedError(
            f"Requires one of: {[role.value for role in roles]}",
            code="INSUFFICIENT_ROLE",
        )


@retry_on_disconnect
def create_user(db: Session, payload: UserCreate, *, actor: str = "system") -> User:
    """Create a new user; username and email must be unique."""

    try:
        with atomic(db):
            duplicate = db.scalar(
                select(User.id)
                .where(or_(User.username == payload.username, User.email == payload.email))
                .limit(1)
            )
            if duplicate is not None:
                raise ConflictError("User with this username or email already exists.", code="USER_EXISTS")

            user = User(**payload.model_dump())
            db.add(user)
            db.flush()
            log_audit(
                db,
                actor=actor,
                action="USER_CREATED",
                entity="User",
                entity_id=user.id,
                data={"username": user.username, "email": user.email, "role": user.role.value},
            )
    except IntegrityError as exc:
        # Lost a race against a concurrent registration with the same username/email.
        raise ConflictError("User with this username or email already exists.", code="USER_EXISTS") from exc

    db.refresh(user)
    logger.info("User created", extra={"user_id": user.id, "role": user.role.value})
    return user


@retry_on_disconnect
def update_user(db: Session, actor: User, user_id: int, payload: UserUpdate) -> User:
    """Edit a user's profile; only the user themselves or an Admin may do so."""

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No valid fields provided for update.", code="EMPTY_UPDATE")

    try:
        with atomic(db):
            user = get_user(db, user_id)
            if actor.id != user.id and actor.role != UserRole.Admin:
                raise PermissionDeniedError("Users may only edit their own profile.", code="NOT_PROFILE_OWNER")
            clashes = [User.username == changes["username"]] if "username" in changes else []
            if "email" in changes:
                clashes.append(User.email == changes["email"])
            if clashes:
                duplicate = db.scalar(select(User.id).where(or_(*clashes), User.id != user.id).limit(1))
                if duplicate is not None:
                    raise ConflictError("User with this username or email already exists.", code="USER_EXISTS")
            for field, value in changes.items():
                setattr(user, field, value)
            log_audit(
                db,
                actor=actor_for_user(actor),
                action="USER_UPDATED",
                entity="User",
                entity_id=user.id,
                data=changes,
            )
    except IntegrityError as exc:
        raise ConflictError("User with this username or email already exists.", code="USER_EXISTS") from exc

    db.refresh(user)
    logger.info("User updated", extra={"user_id": user.id, "fields": sorted(changes)})
    return user


def _has_dependents(db: Session, user_id: int) -> bool:
    checks = (
        exists().where(Campaign.user_id == user_id),
        exists().where(Donation.user_id == user_id),
        exists().where(MilestoneVote.user_id == user_id),
        exists().where(Transaction.user_id == user_id),
    )
    return any(db.scalar(select(check)) for check in checks)


@retry_on_disconnect
def delete_user(db: Session, user_id: int, *, actor: str = "system") -> None:
    """Delete a user that owns no ledger rows."""

    with atomic(db):
        user = get_user(db, user_id)
        if _has_dependents(db, user.id):
            raise StateError(
                "User has campaigns, donations, votes or transactions and cannot be deleted.",
                code="HAS_DEPENDENTS",
            )
        db.delete(user)
        log_audit(db, actor=actor, action="USER_DELETED", entity="User", entity_id=user_id, data={})
    logger.info("User deleted", extra={"user_id": user_id})


__all__ = ["create_user", "delete_user", "get_user", "require_role", "update_user"]
