"""Typed snapshots of the entities served by the course backend.

Every model accepts the backend's camelCase keys (``courseId``,
``overallProgress``...) as well as the snake_case attribute names, and ignores
keys it does not know about so backend additions never break a fetch.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Identifier = Union[int, str]

INSTRUCTOR_ROLE = "Instructor"


class BackendModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserSummary(BackendModel):
    """The ``user`` relation embedded in enrollments, progress rows and reviews."""

    id: Optional[Identifier] = None
    name: Optional[str] = None
    email: Optional[str] = None


class Session(BackendModel):
    id: Identifier
    course_id: Optional[Identifier] = None
    title: str = ""
    youtube_link: Optional[str] = None
    explanation: Optional[str] = None
    duration: Optional[float] = None


class Course(BackendModel):
    id: Identifier
    title: str = ""
    description: Optional[str] = None
    category_id: Optional[Identifier] = None
    is_published: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sessions: List[Session] = Field(default_factory=list)

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(value)

    @field_validator("sessions", mode="before")
    @classmethod
    def coerce_sessions(cls, value: Any) -> Any:
        return [] if value is None else value


class Enrollment(BackendModel):
    id: Identifier
    course_id: Optional[Identifier] = None
    user_id: Optional[Identifier] = None
    user: Optional[UserSummary] = None
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(value)

    @property
    def display_name(self) -> str:
        if self.user is None:
            return ""
        return self.user.name or self.user.email or ""

    @property
    def email(self) -> str:
        if self.user is None:
            return ""
        return self.user.email or ""


class ProgressRecord(BackendModel):
    """Per-enrollment completion as served by the instructor progress endpoint."""

    enrollment_id: Identifier
    overall_progress: float = Field(default=0.0, ge=0.0, le=100.0)
    per_session_completion: Set[Identifier] = Field(default_factory=set)
    user_id: Optional[Identifier] = None
    user: Optional[UserSummary] = None

    @model_validator(mode="before")
    @classmethod
    def derive_session_completion(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "perSessionCompletion" in data or "per_session_completion" in data:
            return data
        rows = data.get("progress")
        if not isinstance(rows, list):
            return data
        payload = dict(data)
        payload["perSessionCompletion"] = {
            row["sessionId"]
            for row in rows
            if isinstance(row, dict) and row.get("isCompleted") and row.get("sessionId") is not None
        }
        return payload

    @field_validator("overall_progress", mode="before")
    @classmethod
    def clamp_progress(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        try:
            number = float(value)
        except (TypeError, ValueError):
            return value
        return min(max(number, 0.0), 100.0)


class Comment(BackendModel):
    id: Identifier
    review_id: Optional[Identifier] = None
    user_id: Optional[Identifier] = None
    user: Optional[UserSummary] = None
    text: str = ""


class Review(BackendModel):
    id: Identifier
    course_id: Optional[Identifier] = None
    user_id: Optional[Identifier] = None
    user: Optional[UserSummary] = None
    rating: int = 0
    text: Optional[str] = None
    comments: List[Comment] = Field(default_factory=list)

    @field_validator("comments", mode="before")
    @classmethod
    def coerce_comments(cls, value: Any) -> Any:
        return [] if value is None else value


class StudentRosterEntry(BackendModel):
    """One unique student across every course an instructor owns."""

    user_id: Identifier
    name: Optional[str] = None
    email: Optional[str] = None
    enrollment_count: int = 0


class CurrentUser(BackendModel):
    """The signed-in user as handed over by the session collaborator."""

    id: Identifier
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = "Student"

    @property
    def is_instructor(self) -> bool:
        return self.role == INSTRUCTOR_ROLE


def same_identifier(left: Optional[Identifier], right: Optional[Identifier]) -> bool:
    """Compare ids that may arrive as ``7`` from one endpoint and ``"7"`` from another."""

    if left is None or right is None:
        return False
    return str(left) == str(right)


__all__ = [
    "BackendModel",
    "Comment",
    "Course",
    "CurrentUser",
    "Enrollment",
    "INSTRUCTOR_ROLE",
    "Identifier",
    "ProgressRecord",
    "Review",
    "Session",
    "StudentRosterEntry",
    "UserSummary",
    "same_identifier",
]
