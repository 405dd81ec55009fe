"""Explicit subscription handle for enrollment changes.

Views that depend on the enrollment set (the enrolled-students table, a
student's enrolled-course list) subscribe to a handle passed in at
construction. Whoever performs the mutation owns the handle and publishes
on it.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from pydantic import BaseModel

from .models import Identifier

LOGGER = logging.getLogger("coursedesk.events")


class EnrollmentChange(BaseModel):
    action: str = "unenrolled"
    course_id: Identifier
    enrollment_id: Optional[Identifier] = None
    remaining: Optional[int] = None


EnrollmentListener = Callable[[EnrollmentChange], None]


class EnrollmentEvents:
    """In-process fan-out of :class:`EnrollmentChange` notifications."""

    def __init__(self) -> None:
        self._listeners: List[EnrollmentListener] = []

    def subscribe(self, listener: EnrollmentListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it again."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, change: EnrollmentChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:  # noqa: BLE001
                LOGGER.exception(
                    "Enrollment listener failed",
                    extra={"course_id": change.course_id, "action": change.action},
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)


__all__ = ["EnrollmentChange", "EnrollmentEvents", "EnrollmentListener"]
