"""Transport layer for the course backend."""
from .course_api import CollectionKind, CourseApiClient, CourseApiConfig, parse_collection

__all__ = ["CollectionKind", "CourseApiClient", "CourseApiConfig", "parse_collection"]
