"""User schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from crowdledger.models.user import UserRole


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    email: EmailStr
    firstname: str = Field(default="", max_length=100)
    lastname: str = Field(default="", max_length=100)
    contact: str | None = Field(default=None, max_length=32)
    address: str | None = Field(default=None, max_length=255)
    purpose: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.Donor


class UserUpdate(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=100)
    email: EmailStr | None = None
    firstname: str | None = Field(default=None, max_length=100)
    lastname: str | None = Field(default=None, max_length=100)
    contact: str | None = Field(default=None, max_length=32)
    address: str | None = Field(default=None, max_length=255)
    purpose: str | None = Field(default=None, max_length=255)


class UserRead(BaseModel):
    id: int
    username: str
    email: EmailStr
    firstname: str
    lastname: str
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
