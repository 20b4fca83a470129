"""
OpenBlind Backend — Profile Schemas
=====================================

What:  Request/response models for the profile endpoints and the decrypted
       view returned by ProfileService.get_decrypted_data().

Allow-list:
    ProfileUpdateRequest ignores unknown keys (extra="ignore"), so a client
    sending {"user_id": 999, "given_name": "Ana"} only updates given_name.
    ProfileService.update_safely applies the same allow-list again for
    callers that bypass the HTTP layer.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Preferences(BaseModel):
    """Accessibility preferences; stored as plaintext JSON."""

    language: Literal["es", "en"] = Field(default="es", description="Interface language")
    voice_speed: float = Field(default=1.0, ge=0.5, le=2.0, description="Speech rate multiplier")
    notifications: bool = Field(default=True, description="Push notifications enabled")
    theme: Literal["light", "dark", "high_contrast"] = Field(
        default="light", description="Colour theme"
    )


class PreferencesUpdate(BaseModel):
    """Partial preferences; only the keys sent are merged into the stored value."""

    model_config = ConfigDict(extra="ignore")

    language: Optional[Literal["es", "en"]] = None
    voice_speed: Optional[float] = Field(default=None, ge=0.5, le=2.0)
    notifications: Optional[bool] = None
    theme: Optional[Literal["light", "dark", "high_contrast"]] = None


class ProfileData(BaseModel):
    """
    Fully decrypted profile.

    Produced only by ProfileService.get_decrypted_data(); never built straight
    from the ORM row, whose sensitive columns hold envelopes.
    """

    id: int
    user_id: int
    given_name: str
    family_name: str
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None
    birth_date: Optional[date] = None
    preferences: Dict[str, Any] = Field(default_factory=dict)
    encryption_version: Optional[str] = None
    last_profile_update: Optional[datetime] = None
    revision: int = 1


class ProfileUpdateRequest(BaseModel):
    """Body of PUT /api/users/{user_id}/profile. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    given_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    family_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    profile_image_url: Optional[str] = Field(default=None, max_length=2048)
    birth_date: Optional[date] = None
    preferences: Optional[PreferencesUpdate] = None

    @field_validator("given_name", "family_name")
    @classmethod
    def reject_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("must not be blank")
        return v

    def to_patch(self) -> Dict[str, Any]:
        """Only the fields the client actually sent."""
        patch = self.model_dump(exclude_unset=True)
        if "preferences" in patch and patch["preferences"] is not None:
            patch["preferences"] = {
                k: v for k, v in patch["preferences"].items() if v is not None
            }
        return patch


class ProfileSearchResult(BaseModel):
    """One hit of the admin name search."""

    user_id: int
    given_name: str
    family_name: str
    email: Optional[str] = None


class ProfileSearchResponse(BaseModel):
    query: str
    count: int
    results: List[ProfileSearchResult]
