"""Session admission models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from chemsnap.models.access import AccessDecision
from chemsnap.models.user_profile import StreakUpdate


class AdmissionState(StrEnum):
    """Session admission lifecycle states."""

    UNCHECKED = "unchecked"
    CHECKING = "checking"
    AUTHENTICATED = "authenticated"
    BLOCKED = "blocked"
    UNAUTHENTICATED = "unauthenticated"


class NoticeLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """A user-visible, non-blocking message (toast)."""

    level: NoticeLevel
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)


class ActivityResult(BaseModel):
    """A stored submission plus the streak outcome it triggered."""

    record: dict[str, Any]
    streak: StreakUpdate | None = None
    notices: list[Notice] = Field(default_factory=list)


class Admission(BaseModel):
    """Result of one session admission check."""

    state: AdmissionState
    decision: AccessDecision
    user_id: str | None = None
    streak: StreakUpdate | None = None
    notices: list[Notice] = Field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.state == AdmissionState.AUTHENTICATED and self.decision.allowed
