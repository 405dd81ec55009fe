"""CLI helpers for inspecting instructor views against a live course backend."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from apps.client.course_api import CourseApiClient, CourseApiConfig
from apps.instructor.course_aggregate import CourseAggregate, CourseManagementView
from apps.instructor.enrollment_table import EnrollmentTable, PageResult, SortKey
from apps.instructor.review_board import ReviewBoard
from apps.instructor.statistics import InstructorStats, StatisticsAggregator
from coursedesk.core.config import ClientConfig, load_client_config, merge_table_config
from coursedesk.core.errors import ConfigError, CourseDeskError
from coursedesk.core.models import CurrentUser, Review

app = typer.Typer(help="Inspect course management views, statistics, and reviews.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    show_default=False,
    help="YAML config path (defaults to COURSEDESK_CONFIG or config/coursedesk.yaml).",
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(path: Optional[Path]) -> ClientConfig:
    try:
        return load_client_config(path)
    except ConfigError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=2) from exc


def _build_client(config: ClientConfig) -> CourseApiClient:
    return CourseApiClient(CourseApiConfig(base_url=config.backend.api_base, timeout=config.backend.timeout))


def _print_table(headers: list[str], rows: List[dict], keys: list[str]) -> None:
    table = Table(*headers)
    for row in rows:
        table.add_row(*[str(row.get(key, "")) for key in keys])
    console.print(table)


def _course_payload(view: CourseManagementView, page: PageResult) -> Dict[str, Any]:
    return {
        "course": view.course.model_dump(mode="json", by_alias=True) if view.course else None,
        "sessions": [session.model_dump(mode="json", by_alias=True) for session in view.sessions],
        "errors": view.errors,
        "unauthorized": view.unauthorized,
        "enrollments": {
            "page": page.page,
            "totalPages": page.total_pages,
            "total": page.total,
            "sort": page.sort_key.value,
            "direction": page.sort_direction.value,
            "rows": [
                {
                    "enrollmentId": row.enrollment.id,
                    "name": row.display_name,
                    "email": row.email,
                    "progress": row.progress_label,
                }
                for row in page.rows
            ],
        },
    }


def _print_course(view: CourseManagementView, page: PageResult) -> None:
    title = view.course.title if view.course else "(course unavailable)"
    console.print(f"[bold]Course:[/bold] {title}")
    for source, message in view.errors.items():
        console.print(f"[yellow]{source}:[/yellow] {message}")
    _print_table(
        ["Session", "Title"],
        [{"id": session.id, "title": session.title} for session in view.sessions],
        ["id", "title"],
    )
    _print_table(
        ["Name", "Email", "Progress"],
        [{"name": row.display_name, "email": row.email, "progress": row.progress_label} for row in page.rows],
        ["name", "email", "progress"],
    )
    if page.total:
        console.print(f"[dim]Showing {page.showing_from}-{page.showing_to} of {page.total}[/dim]")


async def _inspect_course(config: ClientConfig, course_id: str, table: EnrollmentTable, page: int):
    client = _build_client(config)
    try:
        aggregate = CourseAggregate(client)
        view = await aggregate.load(course_id, config.backend.resolve_token())
    finally:
        await client.aclose()
    # First render has no page count yet; project() clamps the requested page.
    table.page = page
    return view, table.render(view.enrollments, view.progress)


@app.command()
def course(
    course_id: str = typer.Argument(..., help="Course identifier."),
    config_path: Path | None = CONFIG_OPTION,
    sort: Optional[str] = typer.Option(None, "--sort", help=f"Sort key: {', '.join(SortKey.choices())}."),
    direction: Optional[str] = typer.Option(None, "--direction", help="asc or desc."),
    page: int = typer.Option(1, "--page", min=1, help="Page of enrolled students to show."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Aggregate one course and print its sessions and enrolled students."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    try:
        table_config = merge_table_config(config.table, {"default_sort": sort, "default_direction": direction})
    except ConfigError as exc:
        raise typer.BadParameter(exc.message) from exc
    table = EnrollmentTable.from_config(table_config)

    view, result = asyncio.run(_inspect_course(config, course_id, table, page))
    if view.unauthorized:
        console.print(f"[red]{view.unauthorized}[/red]")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(_course_payload(view, result), indent=2, ensure_ascii=False))
        return
    _print_course(view, result)


async def _inspect_stats(config: ClientConfig, instructor_id: str) -> InstructorStats:
    client = _build_client(config)
    credential = config.backend.resolve_token()
    try:
        aggregator = StatisticsAggregator(
            client,
            coalesce_progress_fetches=config.statistics.coalesce_progress_fetches,
        )
        courses = await aggregator.load_instructor_courses(instructor_id, credential)
        return await aggregator.build_instructor_stats(courses, credential)
    finally:
        await client.aclose()


@app.command()
def stats(
    instructor_id: str = typer.Argument(..., help="Instructor user identifier."),
    config_path: Path | None = CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Per-course statistics plus the deduplicated student roster."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    try:
        payload = asyncio.run(_inspect_stats(config, instructor_id))
    except CourseDeskError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    if as_json:
        typer.echo(json.dumps(payload.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return
    console.print(f"[bold]Courses:[/bold] {payload.total_courses}  [bold]Sessions:[/bold] {payload.total_sessions}")
    _print_table(
        ["Course", "Enrolled", "Sessions", "Completed", "Progress", "Error"],
        [
            {
                "title": stat.title,
                "enrolled": stat.total_enrollments,
                "sessions": stat.total_sessions,
                "completed": stat.completed_sessions,
                "progress": f"{stat.overall_progress:.0f}%",
                "error": stat.error or "",
            }
            for stat in payload.courses
        ],
        ["title", "enrolled", "sessions", "completed", "progress", "error"],
    )
    _print_table(
        ["Student", "Email", "Enrollments"],
        [
            {"name": entry.name or "N/A", "email": entry.email or "N/A", "count": entry.enrollment_count}
            for entry in payload.roster
        ],
        ["name", "email", "count"],
    )


async def _inspect_reviews(config: ClientConfig, course_id: str, user: CurrentUser) -> ReviewBoard:
    client = _build_client(config)
    try:
        board = ReviewBoard(client, course_id, user, config.backend.resolve_token())
        await board.refresh()
        return board
    finally:
        await client.aclose()


def _review_row(review: Review) -> Dict[str, Any]:
    author = review.user.name if review.user and review.user.name else str(review.user_id or "")
    return {
        "id": review.id,
        "author": author,
        "rating": "*" * review.rating,
        "text": review.text or "",
        "comments": len(review.comments),
    }


@app.command()
def reviews(
    course_id: str = typer.Argument(..., help="Course identifier."),
    user_id: str = typer.Option("0", "--user", help="Viewing user id, used to report review state."),
    config_path: Path | None = CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """List a course's reviews and whether ``--user`` has already reviewed it."""

    _configure_logging(verbose)
    config = _load_config(config_path)
    board = asyncio.run(_inspect_reviews(config, course_id, CurrentUser(id=user_id)))
    if board.error:
        console.print(f"[red]{board.error}[/red]")
        raise typer.Exit(code=1)
    if as_json:
        payload = {
            "state": board.state.value,
            "reviews": [review.model_dump(mode="json", by_alias=True) for review in board.reviews],
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    rows = [_review_row(review) for review in board.reviews]
    _print_table(["Review", "Author", "Rating", "Text", "Comments"], rows, ["id", "author", "rating", "text", "comments"])
    console.print(f"[dim]Review state for user {user_id}: {board.state.value}[/dim]")


if __name__ == "__main__":
    app()
