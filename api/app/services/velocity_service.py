"""Sprint velocity and burndown reports, workspace-wide and per project."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.adapters.board_store import IssueRecord, ProjectMemberRecord, SprintRecord, session_scope
from app.models.board import SprintStatus
from app.models.report import (
    BurndownPoint,
    BurndownSprint,
    SprintBurndownPoint,
    SprintBurndownReport,
    VelocityPoint,
    VelocityTrendReport,
    VelocityTrendSprint,
)
from app.services.report_access_service import ProjectScope, apply_scope, is_leadership, member_project_ids
from app.services.report_dates import (
    DateRange,
    end_of_day,
    iso_day,
    iso_z,
    iter_days,
    span_days,
    start_of_day,
)
from app.services.report_errors import InvalidDateRange, InvalidReportRequest, ReportAccessError, ReportNotFound
from app.services.report_facts import first_done_at, status_histories
from app.services.request_user import RequestUser

logger = logging.getLogger(__name__)

DEFAULT_TREND_LIMIT = 10
MAX_TREND_LIMIT = 50
FALLBACK_SPRINT_COUNT = 6


@dataclass(frozen=True)
class SprintIssue:
    issue_id: str
    sprint_id: str | None
    story_points: int
    created_at: datetime
    done_at: datetime | None


def clamp_limit(raw: str | None) -> int:
    try:
        parsed = int(str(raw).strip()) if raw is not None else 0
    except ValueError:
        parsed = 0
    if parsed == 0:
        return DEFAULT_TREND_LIMIT
    return min(max(parsed, 1), MAX_TREND_LIMIT)


def _sprint_issues(session, query) -> list[SprintIssue]:
    issues = query.all()
    histories = status_histories(session, [issue.id for issue in issues])
    return [
        SprintIssue(
            issue_id=issue.id,
            sprint_id=issue.sprint_id,
            story_points=issue.story_points or 0,
            created_at=issue.created_at,
            done_at=first_done_at(histories.get(issue.id, []), issue.status, issue.updated_at),
        )
        for issue in issues
    ]


def _within(value: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    if value is None or start is None or end is None:
        return False
    return start <= value <= end


def velocity_trend_report(scope: ProjectScope, limit: int = DEFAULT_TREND_LIMIT) -> VelocityTrendReport:
    """Committed vs completed points for the most recently finished sprints."""
    with session_scope() as session:
        sprint_query = session.query(SprintRecord).filter(SprintRecord.status == SprintStatus.COMPLETED.value)
        sprints = (
            apply_scope(sprint_query, SprintRecord.project_id, scope)
            .order_by(SprintRecord.end_date.desc())
            .limit(limit)
            .all()
        )
        if not sprints:
            return VelocityTrendReport(sprints=[])
        issue_query = session.query(IssueRecord).filter(IssueRecord.sprint_id.in_([s.id for s in sprints]))
        issues = _sprint_issues(session, apply_scope(issue_query, IssueRecord.project_id, scope))

        rows: list[VelocityTrendSprint] = []
        for sprint in sprints:
            sprint_issues = [issue for issue in issues if issue.sprint_id == sprint.id]
            committed = sum(issue.story_points for issue in sprint_issues)
            completed = sum(
                issue.story_points
                for issue in sprint_issues
                if _within(issue.done_at, sprint.start_date, sprint.end_date)
            )
            rows.append(
                VelocityTrendSprint(
                    id=sprint.id,
                    name=sprint.name,
                    end_date=iso_z(sprint.end_date) or "",
                    committed_points=committed,
                    completed_points=completed,
                    spillover_points=max(committed - completed, 0),
                )
            )
    logger.debug("velocity_trend_report sprints=%s limit=%s", len(rows), limit)
    return VelocityTrendReport(sprints=rows)


def _default_sprint(session, user: RequestUser, project_id: str | None):
    query = session.query(SprintRecord).filter(SprintRecord.status == SprintStatus.ACTIVE.value)
    if project_id:
        query = query.filter(SprintRecord.project_id == project_id)
    else:
        project_ids = member_project_ids(user.id)
        if not project_ids:
            return None
        query = query.filter(SprintRecord.project_id.in_(project_ids))
    return query.order_by(SprintRecord.start_date.desc()).first()


def sprint_burndown_report(
    user: RequestUser,
    sprint_id: str | None = None,
    project_id: str | None = None,
) -> SprintBurndownReport:
    with session_scope() as session:
        if sprint_id:
            sprint = session.get(SprintRecord, sprint_id)
        else:
            sprint = _default_sprint(session, user, project_id)
        if sprint is None:
            raise ReportNotFound("No sprint found")
        if sprint.start_date is None or sprint.end_date is None:
            raise InvalidReportRequest("Sprint dates are not defined")
        if not is_leadership(user):
            membership = (
                session.query(ProjectMemberRecord.id)
                .filter(
                    ProjectMemberRecord.project_id == sprint.project_id,
                    ProjectMemberRecord.user_id == user.id,
                )
                .first()
            )
            if membership is None:
                raise ReportAccessError("Forbidden")

        issue_query = session.query(IssueRecord).filter(
            IssueRecord.sprint_id == sprint.id,
            IssueRecord.project_id == sprint.project_id,
        )
        issues = _sprint_issues(session, issue_query)
        start_date, end_date = sprint.start_date, sprint.end_date
        sprint_payload = BurndownSprint(
            id=sprint.id,
            name=sprint.name,
            start_date=iso_z(start_date),
            end_date=iso_z(end_date),
        )

    points_total = sum(issue.story_points for issue in issues)
    series: list[SprintBurndownPoint] = []
    for day in iter_days(start_date, end_date):
        cutoff = end_of_day(day)
        completed = sum(
            issue.story_points for issue in issues if issue.done_at is not None and issue.done_at <= cutoff
        )
        series.append(
            SprintBurndownPoint(
                date=day.isoformat(),
                remaining_points=max(points_total - completed, 0),
                completed_points=completed,
            )
        )
    return SprintBurndownReport(sprint=sprint_payload, points_total=points_total, series=series)


def sprint_window(project_id: str, sprint_id: str, window: DateRange) -> DateRange:
    """Replace the requested window with the sprint's own dates where it has them."""
    with session_scope() as session:
        sprint = (
            session.query(SprintRecord)
            .filter(SprintRecord.id == sprint_id, SprintRecord.project_id == project_id)
            .first()
        )
        if sprint is None:
            raise ReportNotFound("Sprint not found")
        start = start_of_day(sprint.start_date) if sprint.start_date else window.start
        end = end_of_day(sprint.end_date) if sprint.end_date else window.end
    if end < start:
        raise InvalidDateRange("Invalid sprint date range")
    return DateRange(start=start, end=end, days=span_days(start, end))


def project_burndown(project_id: str, window: DateRange, sprint_id: str | None = None) -> list[BurndownPoint]:
    with session_scope() as session:
        query = session.query(IssueRecord).filter(
            IssueRecord.project_id == project_id,
            IssueRecord.created_at <= window.end,
        )
        if sprint_id:
            query = query.filter(IssueRecord.sprint_id == sprint_id)
        issues = _sprint_issues(session, query)

    points: list[BurndownPoint] = []
    for day in iter_days(window.start, window.end):
        cutoff = end_of_day(day)
        remaining_issues = 0
        remaining_points = 0
        for issue in issues:
            if issue.created_at > cutoff:
                continue
            if issue.done_at is None or issue.done_at > cutoff:
                remaining_issues += 1
                remaining_points += issue.story_points
        points.append(
            BurndownPoint(
                date=day.isoformat(),
                remaining_points=remaining_points,
                remaining_issues=remaining_issues,
            )
        )
    return points


def project_velocity(project_id: str, window: DateRange, sprint_id: str | None = None) -> list[VelocityPoint]:
    with session_scope() as session:
        sprint_query = session.query(SprintRecord).filter(SprintRecord.project_id == project_id)
        if sprint_id:
            sprint_query = sprint_query.filter(SprintRecord.id == sprint_id)
        sprints = sprint_query.order_by(SprintRecord.start_date.asc()).all()
        if not sprints:
            return []

        overlapping = [
            sprint
            for sprint in sprints
            if (sprint.start_date or window.start) <= window.end and (sprint.end_date or window.end) >= window.start
        ]
        targets = overlapping or sprints[-FALLBACK_SPRINT_COUNT:]
        issue_query = session.query(IssueRecord).filter(
            IssueRecord.project_id == project_id,
            IssueRecord.sprint_id.in_([sprint.id for sprint in targets]),
        )
        issues = _sprint_issues(session, issue_query)

        points: list[VelocityPoint] = []
        for sprint in targets:
            sprint_start = sprint.start_date or window.start
            sprint_end = sprint.end_date or window.end
            completed_issues = 0
            completed_points = 0
            for issue in issues:
                if issue.sprint_id != sprint.id:
                    continue
                if _within(issue.done_at, sprint_start, sprint_end):
                    completed_issues += 1
                    completed_points += issue.story_points
            points.append(
                VelocityPoint(
                    sprint_id=sprint.id,
                    sprint_name=sprint.name,
                    completed_points=completed_points,
                    completed_issues=completed_issues,
                    start_date=iso_day(sprint.start_date),
                    end_date=iso_day(sprint.end_date),
                )
            )
    return points
