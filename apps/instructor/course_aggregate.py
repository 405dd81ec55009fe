"""Merge course, sessions, enrollments and progress into one management view."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from apps.client.course_api import DEFAULT_FETCH_ERRORS, CollectionKind, CourseApiClient, parse_collection
from coursedesk.core.errors import (
    UNAUTHORIZED_MESSAGE,
    CourseDeskError,
    FetchError,
    ShapeMismatchError,
    UnauthorizedError,
)
from coursedesk.core.events import EnrollmentChange, EnrollmentEvents
from coursedesk.core.models import Course, Enrollment, Identifier, ProgressRecord, Session, same_identifier

LOGGER = logging.getLogger("coursedesk.instructor.course_aggregate")

INSTRUCTOR_SHAPE_MESSAGE = "Invalid progress data for instructor view"


class CourseSource(str, Enum):
    COURSE = "course"
    SESSIONS = "sessions"
    ENROLLMENTS = "enrollments"
    PROGRESS = "progress"


class CourseManagementView(BaseModel):
    """Snapshot of one aggregation pass over a course.

    ``failures`` is the error slot per source; a source that failed keeps an
    empty collection so the remaining sources still render.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    course_id: Identifier
    course: Optional[Course] = None
    sessions: List[Session] = Field(default_factory=list)
    enrollments: List[Enrollment] = Field(default_factory=list)
    progress: Dict[str, ProgressRecord] = Field(default_factory=dict)
    failures: Dict[str, CourseDeskError] = Field(default_factory=dict, exclude=True)
    unauthorized: Optional[str] = None
    deleted: bool = False
    generation: int = 0

    @property
    def errors(self) -> Dict[str, str]:
        return {source: failure.message for source, failure in self.failures.items()}

    def error_for(self, source: CourseSource | str) -> Optional[str]:
        failure = self.failures.get(CourseSource(source).value)
        return failure.message if failure is not None else None

    @property
    def course_error(self) -> Optional[str]:
        return self.error_for(CourseSource.COURSE)

    @property
    def sessions_error(self) -> Optional[str]:
        return self.error_for(CourseSource.SESSIONS)

    @property
    def enrollments_error(self) -> Optional[str]:
        return self.error_for(CourseSource.ENROLLMENTS)

    @property
    def progress_error(self) -> Optional[str]:
        return self.error_for(CourseSource.PROGRESS)

    def progress_for(self, enrollment_id: Identifier) -> Optional[ProgressRecord]:
        return self.progress.get(str(enrollment_id))

    def raise_for_unauthorized(self) -> None:
        if self.unauthorized:
            raise UnauthorizedError(self.unauthorized)


def normalize_enrollments(payload: Any) -> List[Enrollment]:
    """Accept a list of enrollments, or a lone enrollment object, and nothing else."""

    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        LOGGER.warning("Enrollments payload is not a list", extra={"payload_type": type(payload).__name__})
        raise ShapeMismatchError(CourseSource.ENROLLMENTS.value, "Invalid enrollments data received")
    try:
        return [Enrollment.model_validate(item) for item in payload]
    except PydanticValidationError as exc:
        raise ShapeMismatchError(CourseSource.ENROLLMENTS.value, "Invalid enrollments data received") from exc


def parse_progress_rows(payload: Any) -> List[ProgressRecord]:
    """Validate the instructor progress shape (a list of per-enrollment rows).

    The student endpoint shape (``{progress, sessions, overallProgress}``) is
    rejected explicitly so it is never mistaken for an instructor roster.
    """

    if isinstance(payload, dict) and payload.get("overallProgress") is not None:
        LOGGER.warning("Received student progress shape for instructor view")
        raise ShapeMismatchError(CourseSource.PROGRESS.value, INSTRUCTOR_SHAPE_MESSAGE)
    if not isinstance(payload, list):
        LOGGER.warning("Progress payload is invalid", extra={"payload_type": type(payload).__name__})
        raise ShapeMismatchError(CourseSource.PROGRESS.value, "Invalid progress data received")
    try:
        return [ProgressRecord.model_validate(item) for item in payload]
    except PydanticValidationError as exc:
        raise ShapeMismatchError(CourseSource.PROGRESS.value, "Invalid progress data received") from exc


def normalize_progress(payload: Any) -> Dict[str, ProgressRecord]:
    """Fold progress rows into a lookup keyed by enrollment id (last write wins)."""

    progress: Dict[str, ProgressRecord] = {}
    for record in parse_progress_rows(payload):
        progress[str(record.enrollment_id)] = record
    return progress


def _as_failure(source: CourseSource, outcome: BaseException) -> CourseDeskError:
    if isinstance(outcome, CourseDeskError):
        return outcome
    if not isinstance(outcome, Exception):
        raise outcome
    LOGGER.exception("Unexpected error while fetching %s", source.value, exc_info=outcome)
    return FetchError(source.value, DEFAULT_FETCH_ERRORS[CollectionKind(source.value)])


class CourseAggregate:
    """Owns the instructor's management view of one course.

    ``build_course_view`` is a pure aggregation pass. ``load`` commits a pass
    as the current view unless a newer pass started meanwhile, and the
    mutation helpers patch the committed view once the backend confirms.
    """

    def __init__(
        self,
        client: CourseApiClient,
        *,
        events: EnrollmentEvents | None = None,
    ) -> None:
        self._client = client
        self._events = events
        self._generation = 0
        self.view: Optional[CourseManagementView] = None

    async def build_course_view(self, course_id: Identifier, credential: str | None) -> CourseManagementView:
        params = {"courseId": course_id}
        sources = (CourseSource.COURSE, CourseSource.SESSIONS, CourseSource.ENROLLMENTS, CourseSource.PROGRESS)
        outcomes = await asyncio.gather(
            *(self._client.fetch(CollectionKind(source.value), params, credential) for source in sources),
            return_exceptions=True,
        )

        view = CourseManagementView(course_id=course_id)
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                view.failures[source.value] = _as_failure(source, outcome)
                continue
            try:
                self._apply(view, source, outcome)
            except ShapeMismatchError as exc:
                view.failures[source.value] = exc

        course_failure = view.failures.get(CourseSource.COURSE.value)
        if isinstance(course_failure, FetchError) and course_failure.forbidden:
            view.unauthorized = UNAUTHORIZED_MESSAGE
            view.sessions = []
            view.enrollments = []
            view.progress = {}
        elif CourseSource.ENROLLMENTS.value not in view.failures:
            self._drop_stale_progress(view)

        LOGGER.info(
            "Course view built",
            extra={
                "course_id": course_id,
                "failed_sources": sorted(view.failures),
                "unauthorized": bool(view.unauthorized),
            },
        )
        return view

    def _apply(self, view: CourseManagementView, source: CourseSource, payload: Any) -> None:
        if source is CourseSource.COURSE:
            view.course = parse_collection(CollectionKind.COURSE, payload)
        elif source is CourseSource.SESSIONS:
            view.sessions = parse_collection(CollectionKind.SESSIONS, payload)
        elif source is CourseSource.ENROLLMENTS:
            view.enrollments = normalize_enrollments(payload)
        else:
            view.progress = normalize_progress(payload)

    @staticmethod
    def _drop_stale_progress(view: CourseManagementView) -> None:
        known = {str(enrollment.id) for enrollment in view.enrollments}
        stale = [key for key in view.progress if key not in known]
        for key in stale:
            del view.progress[key]
        if stale:
            LOGGER.debug("Dropped stale progress rows", extra={"course_id": view.course_id, "count": len(stale)})

    async def load(self, course_id: Identifier, credential: str | None) -> Optional[CourseManagementView]:
        """Run a pass and commit it unless a newer pass was started meanwhile."""

        self._generation += 1
        generation = self._generation
        view = await self.build_course_view(course_id, credential)
        if generation != self._generation:
            LOGGER.info(
                "Discarding stale course view",
                extra={"course_id": course_id, "generation": generation, "latest": self._generation},
            )
            return self.view
        view.generation = generation
        self.view = view
        return view

    # ------------------------------------------------------------------
    # Mutations

    def _require_view(self) -> CourseManagementView:
        if self.view is None:
            raise RuntimeError("No course view loaded; call load() first")
        return self.view

    async def delete_session(self, session_id: Identifier, credential: str | None) -> CourseManagementView:
        view = self._require_view()
        await self._client.delete_session(view.course_id, session_id, credential)
        self.view = view.model_copy(
            update={"sessions": [session for session in view.sessions if not same_identifier(session.id, session_id)]}
        )
        LOGGER.info("Session deleted", extra={"course_id": view.course_id, "session_id": session_id})
        return self.view

    async def delete_course(self, credential: str | None) -> CourseManagementView:
        view = self._require_view()
        await self._client.delete_course(view.course_id, credential)
        self.view = view.model_copy(
            update={"deleted": True, "course": None, "sessions": [], "enrollments": [], "progress": {}}
        )
        LOGGER.info("Course deleted", extra={"course_id": view.course_id})
        return self.view

    async def unenroll(self, enrollment_id: Identifier, credential: str | None) -> CourseManagementView:
        view = self._require_view()
        await self._client.delete_enrollment(enrollment_id, credential)
        enrollments = [item for item in view.enrollments if not same_identifier(item.id, enrollment_id)]
        progress = {key: record for key, record in view.progress.items() if key != str(enrollment_id)}
        self.view = view.model_copy(update={"enrollments": enrollments, "progress": progress})
        if self._events is not None:
            self._events.publish(
                EnrollmentChange(
                    course_id=view.course_id,
                    enrollment_id=enrollment_id,
                    remaining=len(enrollments),
                )
            )
        LOGGER.info("Student unenrolled", extra={"course_id": view.course_id, "enrollment_id": enrollment_id})
        return self.view


__all__ = [
    "CourseAggregate",
    "CourseManagementView",
    "CourseSource",
    "INSTRUCTOR_SHAPE_MESSAGE",
    "normalize_enrollments",
    "normalize_progress",
    "parse_progress_rows",
]
