"""Instructor-facing aggregation: course management, statistics, and reviews."""
from .course_aggregate import CourseAggregate, CourseManagementView, CourseSource
from .enrollment_table import EnrollmentTable, PageResult, SortDirection, SortKey, project
from .review_board import ReviewBoard, ReviewState
from .statistics import CourseStats, InstructorStats, StatisticsAggregator

__all__ = [
    "CourseAggregate",
    "CourseManagementView",
    "CourseSource",
    "CourseStats",
    "EnrollmentTable",
    "InstructorStats",
    "PageResult",
    "ReviewBoard",
    "ReviewState",
    "SortDirection",
    "SortKey",
    "StatisticsAggregator",
    "project",
]
