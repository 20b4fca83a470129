"""
OpenBlind Backend — Account Schemas
=====================================

What:  Request/response models for registration, login, password change and
       admin account management.
Note:  AccountResponse.email is the DECRYPTED address; the stored column holds
       an envelope.
"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from openblind.schemas.profile import Preferences, ProfileData

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    """Body of POST /api/auth/register."""

    email: str = Field(max_length=254, pattern=EMAIL_PATTERN, description="Login email")
    password: str = Field(min_length=8, max_length=128, description="Plaintext password")
    given_name: str = Field(min_length=1, max_length=100)
    family_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    birth_date: Optional[date] = None
    preferences: Optional[Preferences] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    """Body of POST /api/auth/login."""

    email: str = Field(max_length=254)
    password: str = Field(min_length=1, max_length=128)


class PasswordChangeRequest(BaseModel):
    """Body of PUT /api/users/{user_id}/password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class AdminUserUpdate(BaseModel):
    """Body of PUT /api/admin/users/{user_id}. Profile fields go through update_safely."""

    model_config = ConfigDict(extra="ignore")

    role: Optional[Literal["user", "admin"]] = None
    active: Optional[bool] = None
    given_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    family_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class AccountResponse(BaseModel):
    id: int
    email: str = Field(description="Decrypted email address")
    role: str
    active: bool
    created_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    """Returned by register and login. Token issuance happens outside this service."""

    message: str
    account: AccountResponse
    profile: Optional[ProfileData] = None


class UserDetailResponse(BaseModel):
    account: AccountResponse
    profile: Optional[ProfileData] = None


class MessageResponse(BaseModel):
    message: str
