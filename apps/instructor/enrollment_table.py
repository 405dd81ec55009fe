"""Sorted, paginated projection of a course's enrolled students."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from coursedesk.core.config import TableConfig
from coursedesk.core.events import EnrollmentChange, EnrollmentEvents
from coursedesk.core.models import Enrollment, Identifier, ProgressRecord

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class SortKey(str, Enum):
    NAME = "name"
    EMAIL = "email"
    CREATED_AT = "createdAt"
    PROGRESS = "progress"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def flipped(self) -> "SortDirection":
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


class EnrollmentRow(BaseModel):
    enrollment: Enrollment
    progress: Optional[float] = None

    @property
    def display_name(self) -> str:
        return self.enrollment.display_name or "N/A"

    @property
    def email(self) -> str:
        return self.enrollment.email or "N/A"

    @property
    def progress_label(self) -> str:
        return f"{round(self.progress)}%" if self.progress is not None else "N/A"


class PageResult(BaseModel):
    rows: List[EnrollmentRow]
    page: int
    page_size: int
    total_pages: int
    total: int
    showing_from: int
    showing_to: int
    sort_key: SortKey
    sort_direction: SortDirection

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def _lookup(progress: Mapping[Any, ProgressRecord], enrollment_id: Identifier) -> Optional[ProgressRecord]:
    record = progress.get(enrollment_id)
    if record is None:
        record = progress.get(str(enrollment_id))
    return record


def _sort_value(key: SortKey, progress: Mapping[Any, ProgressRecord]) -> Callable[[Enrollment], Any]:
    if key is SortKey.NAME:
        return lambda enrollment: enrollment.display_name
    if key is SortKey.EMAIL:
        return lambda enrollment: enrollment.email
    if key is SortKey.CREATED_AT:
        return lambda enrollment: enrollment.created_at or _EARLIEST

    def _progress(enrollment: Enrollment) -> float:
        record = _lookup(progress, enrollment.id)
        return record.overall_progress if record is not None else 0.0

    return _progress


def sort_enrollments(
    enrollments: Sequence[Enrollment],
    progress_by_enrollment_id: Mapping[Any, ProgressRecord],
    sort_key: SortKey | str,
    sort_direction: SortDirection | str,
) -> List[Enrollment]:
    """Stable sort; rows with equal keys keep their input order in both directions."""

    key = SortKey(sort_key)
    direction = SortDirection(sort_direction)
    return sorted(
        enrollments,
        key=_sort_value(key, progress_by_enrollment_id),
        reverse=direction is SortDirection.DESC,
    )


def project(
    enrollments: Sequence[Enrollment],
    progress_by_enrollment_id: Mapping[Any, ProgressRecord],
    sort_key: SortKey | str,
    sort_direction: SortDirection | str,
    page: int,
    page_size: int,
) -> PageResult:
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    ordered = sort_enrollments(enrollments, progress_by_enrollment_id, sort_key, sort_direction)
    total = len(ordered)
    total_pages = math.ceil(total / page_size)
    current = min(max(page, 1), max(total_pages, 1))
    start = (current - 1) * page_size
    window = ordered[start : start + page_size]
    rows = []
    for enrollment in window:
        record = _lookup(progress_by_enrollment_id, enrollment.id)
        rows.append(
            EnrollmentRow(
                enrollment=enrollment,
                progress=record.overall_progress if record is not None else None,
            )
        )
    return PageResult(
        rows=rows,
        page=current,
        page_size=page_size,
        total_pages=total_pages,
        total=total,
        showing_from=start + 1 if rows else 0,
        showing_to=start + len(rows),
        sort_key=SortKey(sort_key),
        sort_direction=SortDirection(sort_direction),
    )


class EnrollmentTable:
    """Interactive sort/page state for the enrolled-students table."""

    def __init__(
        self,
        *,
        page_size: int = 5,
        sort_key: SortKey | str = SortKey.CREATED_AT,
        sort_direction: SortDirection | str = SortDirection.DESC,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.sort_key = SortKey(sort_key)
        self.sort_direction = SortDirection(sort_direction)
        self.page = 1
        self._total_pages = 0
        self._last_count: Optional[int] = None

    @classmethod
    def from_config(cls, config: TableConfig) -> "EnrollmentTable":
        return cls(
            page_size=config.page_size,
            sort_key=config.default_sort,
            sort_direction=config.default_direction,
        )

    def toggle_sort(self, key: SortKey | str) -> None:
        key = SortKey(key)
        if key is self.sort_key:
            self.sort_direction = self.sort_direction.flipped()
        else:
            self.sort_key = key
            self.sort_direction = SortDirection.ASC
        self.page = 1

    def go_to_page(self, page: int) -> int:
        self.page = min(max(page, 1), max(self._total_pages, 1))
        return self.page

    def next_page(self) -> int:
        return self.go_to_page(self.page + 1)

    def previous_page(self) -> int:
        return self.go_to_page(self.page - 1)

    def reset_page(self) -> None:
        self.page = 1

    def render(
        self,
        enrollments: Sequence[Enrollment],
        progress_by_enrollment_id: Mapping[Any, ProgressRecord],
    ) -> PageResult:
        count = len(enrollments)
        if self._last_count is not None and count < self._last_count:
            self.page = 1
        self._last_count = count
        result = project(
            enrollments,
            progress_by_enrollment_id,
            self.sort_key,
            self.sort_direction,
            self.page,
            self.page_size,
        )
        self.page = result.page
        self._total_pages = result.total_pages
        return result

    def handle_enrollment_change(self, change: EnrollmentChange) -> None:
        self.reset_page()

    def bind(self, events: EnrollmentEvents) -> Callable[[], None]:
        """Reset to page 1 whenever an enrollment change is published."""
        return events.subscribe(self.handle_enrollment_change)


__all__ = [
    "EnrollmentRow",
    "EnrollmentTable",
    "PageResult",
    "SortDirection",
    "SortKey",
    "project",
    "sort_enrollments",
]
