"""
User Profile Model.

Pydantic model for the application user record returned by the backend
profile endpoint.  Fields mirror the backend's ``UserProfileResponse``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """Represents an application user account.

    Frozen: a profile is replaced wholesale on every successful
    resolution and is never patched field by field.  ``auth_id`` is the
    identity provider's subject for this account.
    """

    id: str
    auth_id: str
    email: str
    full_name: str
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    uploaded_profile_image_url: Optional[str] = None
    linkedin_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None
    professional_background: Optional[str] = None
    can_help_with: Optional[str] = None
    fields_of_expertise: tuple[str, ...] = Field(default_factory=tuple)
    interests: tuple[str, ...] = Field(default_factory=tuple)
    personality_traits: tuple[str, ...] = Field(default_factory=tuple)
    skills: tuple[str, ...] = Field(default_factory=tuple)

    model_config = {"from_attributes": True, "frozen": True, "extra": "ignore"}
