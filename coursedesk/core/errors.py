"""Error taxonomy shared by the client, aggregators, and review board."""

from __future__ import annotations

from typing import Optional

FORBIDDEN_STATUS = 403
UNAUTHORIZED_MESSAGE = "Unauthorized: You are not the instructor of this course"


class CourseDeskError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(CourseDeskError):
    """Raised when configuration values are missing or invalid."""


class FetchError(CourseDeskError):
    """A single collection fetch failed."""

    def __init__(self, source: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.source = source
        self.status_code = status_code

    @property
    def forbidden(self) -> bool:
        return self.status_code == FORBIDDEN_STATUS

    def __repr__(self) -> str:
        return f"FetchError(source={self.source!r}, status_code={self.status_code!r}, message={self.message!r})"


class UnauthorizedError(CourseDeskError):
    """The caller is not the instructor of the requested course."""

    def __init__(self, message: str = UNAUTHORIZED_MESSAGE) -> None:
        super().__init__(message)


class ShapeMismatchError(CourseDeskError):
    """A payload arrived in a shape the instructor view cannot interpret."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(message)
        self.source = source


class ValidationError(CourseDeskError):
    """User-supplied input (rating, comment text) was rejected."""


class RoleNotPermittedError(ValidationError):
    """The current user's role does not allow the requested action."""


class AlreadyReviewedError(CourseDeskError):
    """The current user already has a review for this course."""

    def __init__(self, message: str = "You have already reviewed this course.") -> None:
        super().__init__(message)


class MutationFailedError(CourseDeskError):
    """A delete/unenroll/submit call was rejected by the backend."""

    def __init__(self, action: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.action = action
        self.status_code = status_code


__all__ = [
    "AlreadyReviewedError",
    "ConfigError",
    "CourseDeskError",
    "FetchError",
    "MutationFailedError",
    "RoleNotPermittedError",
    "ShapeMismatchError",
    "UNAUTHORIZED_MESSAGE",
    "UnauthorizedError",
    "ValidationError",
]
