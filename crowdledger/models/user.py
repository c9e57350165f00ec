"""User model."""
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Enum as SqlEnum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class UserRole(str, PyEnum):
    """Roles a platform user can hold."""

    CampaignCreator = "CampaignCreator"
    Donor = "Donor"
    Admin = "Admin"


class User(Base):
    """Represents a platform user (creator, donor or admin)."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    firstname: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    lastname: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    contact: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(SqlEnum(UserRole), nullable=False, default=UserRole.Donor)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    campaigns = relationship("Campaign", back_populates="owner")
    donations = relationship("Donation", back_populates="donor")
