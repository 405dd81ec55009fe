"""Cross-course statistics and the deduplicated student roster for an instructor."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from apps.client.course_api import DEFAULT_FETCH_ERRORS, CollectionKind, CourseApiClient
from coursedesk.core.errors import CourseDeskError
from coursedesk.core.models import Course, Identifier, ProgressRecord, StudentRosterEntry

from .course_aggregate import parse_progress_rows

LOGGER = logging.getLogger("coursedesk.instructor.statistics")

ProgressOutcome = Union[List[ProgressRecord], CourseDeskError]


class CourseStats(BaseModel):
    course_id: Identifier
    title: str = ""
    total_enrollments: int = 0
    total_sessions: int = 0
    completed_sessions: int = 0
    overall_progress: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    error: Optional[str] = None


class InstructorStats(BaseModel):
    total_courses: int = 0
    total_sessions: int = 0
    courses: List[CourseStats] = Field(default_factory=list)
    roster: List[StudentRosterEntry] = Field(default_factory=list)

    @property
    def errors(self) -> Dict[str, str]:
        return {str(stat.course_id): stat.error for stat in self.courses if stat.error}


def compute_course_stats(course: Course, progress: Sequence[ProgressRecord]) -> CourseStats:
    total_enrollments = len(progress)
    completed = sum(1 for record in progress if record.overall_progress > 0)
    overall = (completed / total_enrollments) * 100 if total_enrollments > 0 else 0.0
    return CourseStats(
        course_id=course.id,
        title=course.title,
        total_enrollments=total_enrollments,
        total_sessions=len(course.sessions),
        completed_sessions=completed,
        overall_progress=overall,
        created_at=course.created_at,
        updated_at=course.updated_at,
    )


def build_roster(progress_by_course: Iterable[Sequence[ProgressRecord]]) -> List[StudentRosterEntry]:
    """Group every progress row by user id, in order of first appearance."""

    roster: Dict[str, StudentRosterEntry] = {}
    for rows in progress_by_course:
        for record in rows:
            if record.user_id is None:
                LOGGER.debug("Skipping progress row without user id", extra={"enrollment_id": record.enrollment_id})
                continue
            key = str(record.user_id)
            entry = roster.get(key)
            if entry is None:
                user = record.user
                entry = StudentRosterEntry(
                    user_id=record.user_id,
                    name=user.name if user else None,
                    email=user.email if user else None,
                )
                roster[key] = entry
            entry.enrollment_count += 1
    return list(roster.values())


class StatisticsAggregator:
    """Fan out progress fetches across courses and fold them into statistics."""

    def __init__(self, client: CourseApiClient, *, coalesce_progress_fetches: bool = True) -> None:
        self._client = client
        self._coalesce = coalesce_progress_fetches

    async def load_instructor_courses(self, instructor_id: Identifier, credential: str | None) -> List[Course]:
        return await self._client.list_courses(credential, instructor_id=instructor_id)

    async def build_instructor_stats(self, courses: Sequence[Course], credential: str | None) -> InstructorStats:
        stats_progress = await self._fetch_progress(courses, credential)
        if self._coalesce:
            roster_progress = stats_progress
        else:
            roster_progress = await self._fetch_progress(courses, credential)

        course_stats: List[CourseStats] = []
        for course, outcome in zip(courses, stats_progress):
            if isinstance(outcome, CourseDeskError):
                failed = compute_course_stats(course, [])
                failed.error = outcome.message
                course_stats.append(failed)
                continue
            course_stats.append(compute_course_stats(course, outcome))

        roster = build_roster(outcome for outcome in roster_progress if not isinstance(outcome, CourseDeskError))
        stats = InstructorStats(
            total_courses=len(courses),
            total_sessions=sum(len(course.sessions) for course in courses),
            courses=course_stats,
            roster=roster,
        )
        LOGGER.info(
            "Instructor statistics built",
            extra={
                "course_count": stats.total_courses,
                "student_count": len(roster),
                "failed_courses": sorted(stats.errors),
            },
        )
        return stats

    async def _fetch_progress(self, courses: Sequence[Course], credential: str | None) -> List[ProgressOutcome]:
        outcomes = await asyncio.gather(
            *(self._client.fetch(CollectionKind.PROGRESS, {"courseId": course.id}, credential) for course in courses),
            return_exceptions=True,
        )
        settled: List[ProgressOutcome] = []
        for course, outcome in zip(courses, outcomes):
            if isinstance(outcome, CourseDeskError):
                settled.append(outcome)
            elif isinstance(outcome, Exception):
                LOGGER.exception("Unexpected error fetching progress for course %s", course.id, exc_info=outcome)
                settled.append(CourseDeskError(DEFAULT_FETCH_ERRORS[CollectionKind.PROGRESS]))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                try:
                    settled.append(parse_progress_rows(outcome))
                except CourseDeskError as exc:
                    settled.append(exc)
        return settled


__all__ = [
    "CourseStats",
    "InstructorStats",
    "StatisticsAggregator",
    "build_roster",
    "compute_course_stats",
]
