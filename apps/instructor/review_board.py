"""Reviews and one-level comment threads for a single course."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional

from apps.client.course_api import CourseApiClient
from coursedesk.core.errors import (
    AlreadyReviewedError,
    CourseDeskError,
    MutationFailedError,
    RoleNotPermittedError,
    ValidationError,
)
from coursedesk.core.models import CurrentUser, Identifier, Review, same_identifier

LOGGER = logging.getLogger("coursedesk.instructor.review_board")

MIN_RATING = 1
MAX_RATING = 5
LOAD_ERROR = "Failed to load reviews"


class ReviewState(str, Enum):
    NOT_REVIEWED = "not_reviewed"
    REVIEWED = "reviewed"


def validate_rating(rating: object) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Please provide a rating between {MIN_RATING} and {MAX_RATING} stars.")
    return rating


def find_user_review(reviews: List[Review], user_id: Identifier) -> Optional[Review]:
    for review in reviews:
        if same_identifier(review.user_id, user_id):
            return review
    return None


class ReviewBoard:
    """Review list, submission rules, and comment-box state for one (course, user)."""

    def __init__(
        self,
        client: CourseApiClient,
        course_id: Identifier,
        user: CurrentUser,
        credential: str | None,
    ) -> None:
        self._client = client
        self.course_id = course_id
        self.user = user
        self._credential = credential
        self.reviews: List[Review] = []
        self.error: Optional[str] = None
        self._submitted = False
        self._commenting: Dict[str, bool] = {}
        self._drafts: Dict[str, str] = {}

    async def refresh(self) -> List[Review]:
        try:
            self.reviews = await self._client.list_reviews(self.course_id, self._credential)
        except CourseDeskError as exc:
            LOGGER.warning("Failed to fetch reviews", extra={"course_id": self.course_id, "error": exc.message})
            self.error = LOAD_ERROR
        else:
            self.error = None
        return self.reviews

    @property
    def own_review(self) -> Optional[Review]:
        return find_user_review(self.reviews, self.user.id)

    @property
    def state(self) -> ReviewState:
        if self._submitted or self.own_review is not None:
            return ReviewState.REVIEWED
        return ReviewState.NOT_REVIEWED

    @property
    def can_submit_review(self) -> bool:
        return not self.user.is_instructor and self.state is ReviewState.NOT_REVIEWED

    async def submit_review(self, rating: object, text: str = "") -> Optional[Review]:
        if self.user.is_instructor:
            raise RoleNotPermittedError("Instructors cannot review their own course.")
        checked_rating = validate_rating(rating)

        # The uniqueness check runs against a fresh copy of the review set.
        try:
            latest = await self._client.list_reviews(self.course_id, self._credential)
        except CourseDeskError as exc:
            LOGGER.warning(
                "Could not refresh reviews before submit",
                extra={"course_id": self.course_id, "error": exc.message},
            )
            raise MutationFailedError(
                "submit_review",
                "Could not verify existing reviews; please try again",
                status_code=getattr(exc, "status_code", None),
            ) from exc
        self.reviews = latest
        if self._submitted or find_user_review(latest, self.user.id) is not None:
            raise AlreadyReviewedError()

        await self._client.post_review(self.course_id, checked_rating, text, self._credential)
        self._submitted = True
        LOGGER.info("Review submitted", extra={"course_id": self.course_id, "rating": checked_rating})
        await self.refresh()
        return self.own_review

    # ------------------------------------------------------------------
    # Comments

    def is_commenting(self, review_id: Identifier) -> bool:
        return self._commenting.get(str(review_id), False)

    def toggle_comment_input(self, review_id: Identifier) -> bool:
        key = str(review_id)
        opening = not self._commenting.get(key, False)
        self._commenting[key] = opening
        if opening:
            self._drafts[key] = ""
        return opening

    def set_draft(self, review_id: Identifier, text: str) -> None:
        self._drafts[str(review_id)] = text

    def draft(self, review_id: Identifier) -> str:
        return self._drafts.get(str(review_id), "")

    async def submit_comment(self, review_id: Identifier, text: Optional[str] = None) -> None:
        body = self.draft(review_id) if text is None else text
        if not body or not body.strip():
            raise ValidationError("Comment cannot be empty")
        await self._client.post_comment(review_id, body, self._credential)
        key = str(review_id)
        self._drafts[key] = ""
        self._commenting[key] = False
        LOGGER.info("Comment submitted", extra={"course_id": self.course_id, "review_id": review_id})
        await self.refresh()


__all__ = [
    "ReviewBoard",
    "ReviewState",
    "find_user_review",
    "validate_rating",
]
