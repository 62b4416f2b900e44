"""User profile, role and identity models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class Role(StrEnum):
    """Account roles. Values match the ``role`` column of the profile record."""

    STUDENT = "student"
    TEACHER = "teacher"
    PERSONAL = "personal"
    ADMIN = "admin"


class Identity(BaseModel):
    """The part of a profile that access decisions are made on."""

    id: str
    role: Role
    is_blocked: bool = False


class AuthUser(BaseModel):
    """Principal reported by the auth provider. Carries no role."""

    id: str
    email: str | None = None


class UserProfile(BaseModel):
    id: str
    role: Role = Role.STUDENT
    is_blocked: bool = False
    current_streak: int = Field(default=0, ge=0)
    last_activity_date: date | None = None
    full_name: str | None = None
    email: str | None = None
    education_level: str | None = None  # students only
    profile_picture_url: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("current_streak", mode="before")
    @classmethod
    def unset_streak_is_zero(cls, value):
        # Fresh accounts may store null
        return 0 if value is None else value

    @property
    def identity(self) -> Identity:
        return Identity(id=self.id, role=self.role, is_blocked=self.is_blocked)


class StreakUpdate(BaseModel):
    """New streak state to persist for a student."""

    new_streak: int = Field(ge=1)
    new_last_activity_date: date
