import asyncio

import pytest

from apps.client.course_api import CourseApiClient, CourseApiConfig
from apps.instructor.statistics import StatisticsAggregator, build_roster, compute_course_stats
from coursedesk.core.models import Course, ProgressRecord
from tests.mocks.course_api import CourseAPIMock

TOKEN = "instructor-token"


def _backend() -> CourseAPIMock:
    backend = CourseAPIMock()
    backend.add_user(TOKEN, "1")
    backend.add_course("c1", title="Databases", sessions=[{"id": "s1"}, {"id": "s2"}])
    backend.add_course("c2", title="Compilers", sessions=[{"id": "s3"}])
    backend.add_course("c3", title="Someone else's", instructor_id="99")
    backend.add_enrollment("e1", "c1", "u1", name="Ada", email="ada@example.com", progress=40)
    backend.add_enrollment("e2", "c1", "u2", name="Grace", email="grace@example.com", progress=0)
    backend.add_enrollment("e3", "c2", "u2", name="Grace", email="grace@example.com", progress=100)
    backend.add_enrollment("e4", "c2", "u3", name="Alan", email="alan@example.com", progress=10)
    return backend


def _aggregator(backend: CourseAPIMock, **kwargs) -> StatisticsAggregator:
    client = CourseApiClient(CourseApiConfig(base_url=backend.base_url), client=backend.build_async_client())
    return StatisticsAggregator(client, **kwargs)


def _run(aggregator: StatisticsAggregator):
    async def _inner():
        courses = await aggregator.load_instructor_courses("1", TOKEN)
        return courses, await aggregator.build_instructor_stats(courses, TOKEN)

    return asyncio.run(_inner())


def test_compute_course_stats_counts_started_enrollments() -> None:
    course = Course.model_validate({"id": 1, "title": "DB", "sessions": [{"id": 1}, {"id": 2}, {"id": 3}]})
    progress = [
        ProgressRecord(enrollment_id=1, overall_progress=0),
        ProgressRecord(enrollment_id=2, overall_progress=25),
        ProgressRecord(enrollment_id=3, overall_progress=100),
        ProgressRecord(enrollment_id=4, overall_progress=None),
    ]
    stats = compute_course_stats(course, progress)

    assert stats.total_enrollments == 4
    assert stats.total_sessions == 3
    assert stats.completed_sessions == 2
    assert stats.overall_progress == pytest.approx(50.0)


def test_compute_course_stats_handles_empty_course() -> None:
    stats = compute_course_stats(Course(id=1, title="Empty"), [])
    assert stats.overall_progress == 0
    assert stats.completed_sessions == 0


def test_build_roster_counts_enrollments_across_courses() -> None:
    course_a = [ProgressRecord.model_validate({"enrollmentId": 10, "userId": 1, "user": {"name": "Ann", "email": "a@x"}})]
    course_b = [
        ProgressRecord.model_validate({"enrollmentId": 11, "userId": 1, "user": {"name": "Ann", "email": "a@x"}}),
        ProgressRecord.model_validate({"enrollmentId": 12, "userId": 2, "user": {"name": "Bo", "email": "b@x"}}),
    ]
    roster = build_roster([course_a, course_b])

    assert [(entry.user_id, entry.name, entry.enrollment_count) for entry in roster] == [(1, "Ann", 2), (2, "Bo", 1)]


def test_build_roster_dedupes_by_user_in_first_seen_order() -> None:
    course_a = [
        ProgressRecord.model_validate({"enrollmentId": 1, "userId": 7, "user": {"name": "Ada"}}),
        ProgressRecord.model_validate({"enrollmentId": 2, "userId": 8, "user": {"name": "Grace"}}),
    ]
    course_b = [
        ProgressRecord.model_validate({"enrollmentId": 3, "userId": "8", "user": {"name": "Grace"}}),
        ProgressRecord.model_validate({"enrollmentId": 4, "userId": 9, "user": {"email": "alan@example.com"}}),
        ProgressRecord.model_validate({"enrollmentId": 5}),
    ]
    roster = build_roster([course_a, course_b])

    assert [str(entry.user_id) for entry in roster] == ["7", "8", "9"]
    assert [entry.enrollment_count for entry in roster] == [1, 2, 1]
    assert roster[2].name is None and roster[2].email == "alan@example.com"


def test_instructor_stats_cover_only_own_courses() -> None:
    courses, stats = _run(_aggregator(_backend()))

    assert [course.id for course in courses] == ["c1", "c2"]
    assert stats.total_courses == 2
    assert stats.total_sessions == 3
    by_course = {stat.course_id: stat for stat in stats.courses}
    assert by_course["c1"].total_enrollments == 2
    assert by_course["c1"].overall_progress == pytest.approx(50.0)
    assert by_course["c2"].overall_progress == pytest.approx(100.0)
    assert [(entry.name, entry.enrollment_count) for entry in stats.roster] == [
        ("Ada", 1),
        ("Grace", 2),
        ("Alan", 1),
    ]
    assert stats.errors == {}


def test_failing_course_is_isolated() -> None:
    backend = _backend()
    aggregator = _aggregator(backend)

    async def _inner():
        courses = await aggregator.load_instructor_courses("1", TOKEN)
        backend.progress["c2"] = {"progress": [], "sessions": [], "overallProgress": 10}
        return await aggregator.build_instructor_stats(courses, TOKEN)

    stats = asyncio.run(_inner())

    assert stats.errors == {"c2": "Invalid progress data for instructor view"}
    healthy = next(stat for stat in stats.courses if stat.course_id == "c1")
    assert healthy.total_enrollments == 2 and healthy.error is None
    assert [entry.name for entry in stats.roster] == ["Ada", "Grace"]


def test_two_pass_mode_matches_coalesced_output() -> None:
    coalesced_backend = _backend()
    two_pass_backend = _backend()

    _, coalesced = _run(_aggregator(coalesced_backend))
    _, two_pass = _run(_aggregator(two_pass_backend, coalesce_progress_fetches=False))

    assert two_pass.model_dump() == coalesced.model_dump()

    def progress_calls(backend: CourseAPIMock) -> int:
        return sum(1 for request in backend.requests if request["path"].startswith("/progress/"))

    assert progress_calls(coalesced_backend) == 2
    assert progress_calls(two_pass_backend) == 4
