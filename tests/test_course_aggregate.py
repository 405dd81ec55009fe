import asyncio
import httpx
import pytest

from apps.client.course_api import CourseApiClient, CourseApiConfig
from apps.instructor.course_aggregate import (
    INSTRUCTOR_SHAPE_MESSAGE,
    CourseAggregate,
    normalize_enrollments,
    normalize_progress,
)
from apps.instructor.enrollment_table import EnrollmentTable
from coursedesk.core.errors import (
    UNAUTHORIZED_MESSAGE,
    MutationFailedError,
    ShapeMismatchError,
    UnauthorizedError,
)
from coursedesk.core.events import EnrollmentChange, EnrollmentEvents
from tests.mocks.course_api import CourseAPIMock

TOKEN = "instructor-token"


def _seeded_backend() -> CourseAPIMock:
    backend = CourseAPIMock()
    backend.add_user(TOKEN, "1")
    backend.add_course(
        "c1",
        title="Database Systems",
        sessions=[{"id": "s1", "title": "Relational model"}, {"id": "s2", "title": "SQL"}],
    )
    backend.add_enrollment("e1", "c1", "u1", name="Ada", email="ada@example.com", progress=50)
    backend.add_enrollment("e2", "c1", "u2", name="Grace", email="grace@example.com", progress=0)
    return backend


def _aggregate(backend: CourseAPIMock, **kwargs) -> CourseAggregate:
    client = CourseApiClient(CourseApiConfig(base_url=backend.base_url), client=backend.build_async_client())
    return CourseAggregate(client, **kwargs)


def test_build_course_view_merges_all_sources() -> None:
    backend = _seeded_backend()
    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.course is not None and view.course.title == "Database Systems"
    assert [session.id for session in view.sessions] == ["s1", "s2"]
    assert [enrollment.id for enrollment in view.enrollments] == ["e1", "e2"]
    assert view.progress_for("e1").overall_progress == 50
    assert view.errors == {}
    assert view.unauthorized is None
    assert all(request["authorization"] == f"Bearer {TOKEN}" for request in backend.requests)


def test_one_failing_source_does_not_blank_the_others() -> None:
    backend = _seeded_backend()
    backend.failures["sessions"] = (500, None)

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.sessions == []
    assert view.sessions_error == "Failed to load sessions"
    assert view.course is not None
    assert len(view.enrollments) == 2
    assert set(view.progress) == {"e1", "e2"}


def test_student_progress_shape_is_rejected_for_instructor_view() -> None:
    backend = _seeded_backend()
    backend.overrides["progress"] = {"progress": [], "sessions": [], "overallProgress": 40}

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.progress == {}
    assert view.progress_error == INSTRUCTOR_SHAPE_MESSAGE
    assert len(view.enrollments) == 2


def test_forbidden_course_marks_view_unauthorized() -> None:
    backend = _seeded_backend()
    backend.failures["course"] = (403, "Forbidden")

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.unauthorized == UNAUTHORIZED_MESSAGE
    assert view.sessions == [] and view.enrollments == [] and view.progress == {}
    with pytest.raises(UnauthorizedError):
        view.raise_for_unauthorized()


def test_progress_without_matching_enrollment_is_dropped() -> None:
    backend = _seeded_backend()
    backend.progress["c1"].append({"enrollmentId": "ghost", "overallProgress": 90})

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert set(view.progress) == {"e1", "e2"}


def test_progress_kept_when_enrollments_failed() -> None:
    backend = _seeded_backend()
    backend.failures["enrollments"] = (500, "db down")

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.enrollments_error == "db down"
    assert set(view.progress) == {"e1", "e2"}


def test_single_enrollment_object_is_wrapped() -> None:
    backend = _seeded_backend()
    backend.overrides["enrollments"] = {"id": "e1", "courseId": "c1", "user": {"name": "Ada"}}

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert [enrollment.id for enrollment in view.enrollments] == ["e1"]
    assert set(view.progress) == {"e1"}


def test_normalizers_reject_unusable_payloads() -> None:
    with pytest.raises(ShapeMismatchError) as excinfo:
        normalize_enrollments("nope")
    assert excinfo.value.message == "Invalid enrollments data received"

    with pytest.raises(ShapeMismatchError):
        normalize_progress({"unexpected": True})

    rows = normalize_progress(
        [
            {"enrollmentId": 1, "overallProgress": 10},
            {"enrollmentId": "1", "overallProgress": 30, "progress": [{"sessionId": "s1", "isCompleted": True}]},
        ]
    )
    assert list(rows) == ["1"]
    assert rows["1"].overall_progress == 30
    assert rows["1"].per_session_completion == {"s1"}


def test_progress_slightly_over_full_is_clamped_not_dropped() -> None:
    backend = _seeded_backend()
    backend.progress["c1"][0]["overallProgress"] = 100.0000001

    view = asyncio.run(_aggregate(backend).build_course_view("c1", TOKEN))

    assert view.progress_error is None
    assert view.progress_for("e1").overall_progress == 100.0
    assert view.progress_for("e2").overall_progress == 0


def test_unenroll_removes_row_and_publishes_change() -> None:
    backend = _seeded_backend()
    for index in range(3, 13):
        backend.add_enrollment(f"e{index}", "c1", f"u{index}", name=f"Student {index}")
    events = EnrollmentEvents()
    received: list[EnrollmentChange] = []
    events.subscribe(received.append)
    table = EnrollmentTable(page_size=5)
    table.bind(events)
    aggregate = _aggregate(backend, events=events)

    async def _run():
        view = await aggregate.load("c1", TOKEN)
        table.render(view.enrollments, view.progress)
        table.go_to_page(3)
        return await aggregate.unenroll("e1", TOKEN)

    view = asyncio.run(_run())

    assert "e1" not in {str(enrollment.id) for enrollment in view.enrollments}
    assert view.progress_for("e1") is None
    assert len(view.enrollments) == 11
    assert received and received[0].enrollment_id == "e1" and received[0].remaining == 11
    assert table.page == 1
    assert [enrollment["id"] for enrollment in backend.enrollments if enrollment["id"] == "e1"] == []


def test_failed_mutation_leaves_view_untouched() -> None:
    backend = _seeded_backend()
    backend.failures["delete_session"] = (500, "Error deleting session")
    aggregate = _aggregate(backend)

    async def _run():
        await aggregate.load("c1", TOKEN)
        await aggregate.delete_session("s1", TOKEN)

    with pytest.raises(MutationFailedError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.message == "Error deleting session"
    assert [session.id for session in aggregate.view.sessions] == ["s1", "s2"]


def test_unenroll_publishes_even_when_a_listener_fails() -> None:
    backend = _seeded_backend()
    events = EnrollmentEvents()

    def broken(change: EnrollmentChange) -> None:
        raise RuntimeError("listener bug")

    events.subscribe(broken)
    table = EnrollmentTable(page_size=1)
    table.bind(events)
    aggregate = _aggregate(backend, events=events)

    async def _run():
        view = await aggregate.load("c1", TOKEN)
        table.render(view.enrollments, view.progress)
        table.go_to_page(2)
        return await aggregate.unenroll("e2", TOKEN)

    view = asyncio.run(_run())

    assert [enrollment.id for enrollment in view.enrollments] == ["e1"]
    assert table.page == 1


def test_failed_unenroll_keeps_rows_and_publishes_nothing() -> None:
    backend = _seeded_backend()
    backend.failures["unenroll"] = (500, "Error unenrolling student")
    events = EnrollmentEvents()
    received: list[EnrollmentChange] = []
    events.subscribe(received.append)
    aggregate = _aggregate(backend, events=events)

    async def _run():
        await aggregate.load("c1", TOKEN)
        await aggregate.unenroll("e1", TOKEN)

    with pytest.raises(MutationFailedError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.message == "Error unenrolling student"
    assert [enrollment.id for enrollment in aggregate.view.enrollments] == ["e1", "e2"]
    assert aggregate.view.progress_for("e1") is not None
    assert set(aggregate.view.progress) == {"e1", "e2"}
    assert received == []


def test_delete_session_and_course_patch_view() -> None:
    backend = _seeded_backend()
    aggregate = _aggregate(backend)

    async def _run():
        await aggregate.load("c1", TOKEN)
        after_session = await aggregate.delete_session("s1", TOKEN)
        after_course = await aggregate.delete_course(TOKEN)
        return after_session, after_course

    after_session, after_course = asyncio.run(_run())

    assert [session.id for session in after_session.sessions] == ["s2"]
    assert after_course.deleted
    assert after_course.course is None and after_course.enrollments == []
    assert [request["method"] for request in backend.requests].count("DELETE") == 2


def test_mutation_before_load_is_rejected() -> None:
    aggregate = _aggregate(_seeded_backend())
    with pytest.raises(RuntimeError):
        asyncio.run(aggregate.delete_course(TOKEN))


class _SlowFirstClient:
    """Client double whose first course fetch finishes after the second."""

    def __init__(self) -> None:
        self.first_started = asyncio.Event()
        self.release_first = asyncio.Event()
        self.course_calls = 0

    async def fetch(self, kind, params, credential):
        kind = getattr(kind, "value", kind)
        if kind == "course":
            self.course_calls += 1
            call = self.course_calls
            if call == 1:
                self.first_started.set()
                await self.release_first.wait()
            return {"id": params["courseId"], "title": f"pass {call}"}
        return []


def test_load_discards_out_of_order_results() -> None:
    async def _run():
        client = _SlowFirstClient()
        aggregate = CourseAggregate(client)
        first = asyncio.create_task(aggregate.load("c1", TOKEN))
        await client.first_started.wait()
        second = await aggregate.load("c1", TOKEN)
        client.release_first.set()
        stale = await first
        return aggregate, second, stale

    aggregate, second, stale = asyncio.run(_run())

    assert second.course.title == "pass 2"
    assert stale is second
    assert aggregate.view.course.title == "pass 2"
    assert aggregate.view.generation == 2


def test_non_json_payload_becomes_source_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/sessions"):
            return httpx.Response(200, content=b"not json")
        return httpx.Response(200, json={"data": {"id": "c1"} if request.url.path == "/courses/c1" else []})

    client = CourseApiClient(
        CourseApiConfig(base_url="http://mock"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://mock"),
    )
    view = asyncio.run(CourseAggregate(client).build_course_view("c1", None))

    assert view.sessions_error == "Course API returned non-JSON payload"
    assert view.course is not None
