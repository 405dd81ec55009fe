"""
Configuration, data model, error taxonomy, and event plumbing for Course Desk.

These modules carry no transport dependency so the aggregation layer in
``apps/`` and any other caller can share them.
"""

from .config import ClientConfig, TableConfig, load_client_config
from .errors import (
    AlreadyReviewedError,
    ConfigError,
    CourseDeskError,
    FetchError,
    MutationFailedError,
    ShapeMismatchError,
    UnauthorizedError,
    ValidationError,
)
from .events import EnrollmentChange, EnrollmentEvents

__all__ = [
    "AlreadyReviewedError",
    "ClientConfig",
    "ConfigError",
    "CourseDeskError",
    "EnrollmentChange",
    "EnrollmentEvents",
    "FetchError",
    "MutationFailedError",
    "ShapeMismatchError",
    "TableConfig",
    "UnauthorizedError",
    "ValidationError",
    "load_client_config",
]
