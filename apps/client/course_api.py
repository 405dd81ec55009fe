"""Async HTTP client for the course backend's ``{data, error}`` envelope API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping

import httpx
from pydantic import ValidationError as PydanticValidationError

from coursedesk.core.errors import FetchError, MutationFailedError, ShapeMismatchError
from coursedesk.core.models import Course, Identifier, Review, Session

LOGGER = logging.getLogger("coursedesk.client.course_api")


class CollectionKind(str, Enum):
    """Logical collections the backend can serve."""

    COURSE = "course"
    COURSES = "courses"
    SESSIONS = "sessions"
    ENROLLMENTS = "enrollments"
    PROGRESS = "progress"
    REVIEWS = "reviews"

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls]


DEFAULT_FETCH_ERRORS: Dict[CollectionKind, str] = {
    CollectionKind.COURSE: "Failed to load course data",
    CollectionKind.COURSES: "Failed to fetch courses",
    CollectionKind.SESSIONS: "Failed to load sessions",
    CollectionKind.ENROLLMENTS: "Failed to load enrollments",
    CollectionKind.PROGRESS: "Failed to load progress data",
    CollectionKind.REVIEWS: "Failed to load reviews",
}


@dataclass
class CourseApiConfig:
    base_url: str
    timeout: float = 30.0


class CourseApiClient:
    def __init__(
        self,
        config: CourseApiConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        if client is None:
            self._client = httpx.AsyncClient(
                base_url=config.base_url,
                timeout=config.timeout,
            )
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    # ------------------------------------------------------------------
    # Reads

    async def fetch(
        self,
        kind: CollectionKind | str,
        params: Mapping[str, Any],
        credential: str | None,
    ) -> Any:
        """Fetch one logical collection and return the envelope's ``data`` payload.

        Raises :class:`FetchError` when the request fails for any reason; a
        fetch never returns a partial collection.
        """

        kind = CollectionKind(kind)
        path, query = _route_for(kind, params)
        default_message = DEFAULT_FETCH_ERRORS[kind]
        try:
            response = await self._client.get(
                path,
                params=query or None,
                headers=self._build_headers(credential),
            )
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "Fetch transport error",
                extra={"source": kind.value, "path": path, "error": str(exc)},
            )
            raise FetchError(kind.value, default_message) from exc

        if response.is_error:
            message = _error_message(response, default_message)
            LOGGER.warning(
                "Fetch rejected",
                extra={"source": kind.value, "path": path, "status": response.status_code},
            )
            raise FetchError(kind.value, message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise FetchError(kind.value, "Course API returned non-JSON payload") from exc
        return body.get("data") if isinstance(body, dict) else None

    async def get_course(self, course_id: Identifier, credential: str | None) -> Course:
        payload = await self.fetch(CollectionKind.COURSE, {"courseId": course_id}, credential)
        return parse_collection(CollectionKind.COURSE, payload)

    async def list_courses(
        self,
        credential: str | None,
        *,
        instructor_id: Identifier | None = None,
    ) -> List[Course]:
        params = {"instructorId": instructor_id} if instructor_id is not None else {}
        payload = await self.fetch(CollectionKind.COURSES, params, credential)
        return parse_collection(CollectionKind.COURSES, payload)

    async def list_sessions(self, course_id: Identifier, credential: str | None) -> List[Session]:
        payload = await self.fetch(CollectionKind.SESSIONS, {"courseId": course_id}, credential)
        return parse_collection(CollectionKind.SESSIONS, payload)

    async def list_reviews(self, course_id: Identifier, credential: str | None) -> List[Review]:
        payload = await self.fetch(CollectionKind.REVIEWS, {"courseId": course_id}, credential)
        return parse_collection(CollectionKind.REVIEWS, payload)

    # ------------------------------------------------------------------
    # Mutations

    async def delete_session(self, course_id: Identifier, session_id: Identifier, credential: str | None) -> Any:
        return await self._mutate(
            "DELETE",
            f"/courses/{course_id}/sessions/{session_id}",
            action="delete_session",
            default_message="Error deleting session",
            credential=credential,
        )

    async def delete_course(self, course_id: Identifier, credential: str | None) -> Any:
        return await self._mutate(
            "DELETE",
            f"/courses/{course_id}",
            action="delete_course",
            default_message="Error deleting course",
            credential=credential,
        )

    async def delete_enrollment(self, enrollment_id: Identifier, credential: str | None) -> Any:
        return await self._mutate(
            "DELETE",
            f"/enrollments/{enrollment_id}",
            action="unenroll",
            default_message="Error unenrolling student",
            credential=credential,
        )

    async def post_review(self, course_id: Identifier, rating: int, text: str, credential: str | None) -> Any:
        return await self._mutate(
            "POST",
            f"/reviews/{course_id}",
            action="submit_review",
            default_message="Failed to add review",
            credential=credential,
            payload={"rating": rating, "text": text},
        )

    async def post_comment(self, review_id: Identifier, text: str, credential: str | None) -> Any:
        return await self._mutate(
            "POST",
            f"/reviews/comment/{review_id}",
            action="submit_comment",
            default_message="Error adding comment",
            credential=credential,
            payload={"text": text},
        )

    async def _mutate(
        self,
        method: str,
        path: str,
        *,
        action: str,
        default_message: str,
        credential: str | None,
        payload: Dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=payload,
                headers=self._build_headers(credential),
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("Mutation transport error", extra={"action": action, "path": path, "error": str(exc)})
            raise MutationFailedError(action, default_message) from exc
        if response.is_error:
            message = _error_message(response, default_message)
            LOGGER.warning(
                "Mutation rejected",
                extra={"action": action, "path": path, "status": response.status_code},
            )
            raise MutationFailedError(action, message, status_code=response.status_code)
        LOGGER.info("Mutation succeeded", extra={"action": action, "path": path})
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("data") if isinstance(body, dict) else body

    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if getattr(self, "_owns_client", False):
            await self._client.aclose()

    def _build_headers(self, credential: str | None) -> Dict[str, str] | None:
        if not credential:
            return None
        return {"Authorization": f"Bearer {credential}"}

    async def __aenter__(self) -> "CourseApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _route_for(kind: CollectionKind, params: Mapping[str, Any]) -> tuple[str, Dict[str, Any]]:
    course_id = params.get("courseId")
    if kind is CollectionKind.COURSES:
        query = {"instructorId": params["instructorId"]} if params.get("instructorId") is not None else {}
        return "/courses", query
    if kind is CollectionKind.ENROLLMENTS:
        return "/enrollments", ({"courseId": course_id} if course_id is not None else {})
    if course_id is None:
        raise ValueError(f"courseId is required to fetch {kind.value}")
    if kind is CollectionKind.COURSE:
        return f"/courses/{course_id}", {}
    if kind is CollectionKind.SESSIONS:
        return f"/courses/{course_id}/sessions", {}
    if kind is CollectionKind.PROGRESS:
        return f"/progress/course/{course_id}/progress", {}
    return f"/reviews/course/{course_id}", {}


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str) and error.strip():
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return default


def parse_collection(kind: CollectionKind, payload: Any) -> Any:
    """Validate a ``data`` payload for the collections that need no shape negotiation.

    Enrollments and progress are normalized by the course aggregate, which
    owns their shape rules.
    """

    try:
        if kind is CollectionKind.COURSE:
            if not isinstance(payload, dict):
                raise ShapeMismatchError(kind.value, "Invalid course data received")
            return Course.model_validate(payload)
        model = {
            CollectionKind.COURSES: Course,
            CollectionKind.SESSIONS: Session,
            CollectionKind.REVIEWS: Review,
        }.get(kind)
        if model is None:
            raise ValueError(f"{kind.value} payloads are normalized by the course aggregate")
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ShapeMismatchError(kind.value, f"Invalid {kind.value} data received")
        return [model.model_validate(item) for item in payload]
    except PydanticValidationError as exc:
        raise ShapeMismatchError(kind.value, f"Invalid {kind.value} data received") from exc


__all__ = [
    "CollectionKind",
    "CourseApiClient",
    "CourseApiConfig",
    "DEFAULT_FETCH_ERRORS",
    "parse_collection",
]
