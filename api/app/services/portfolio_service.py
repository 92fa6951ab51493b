"""Portfolio views: aging open issues, inactive projects and cross-project status counts."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func

from app.adapters.board_store import IssueRecord, ProjectRecord, StandupEntryRecord, UserRecord, session_scope
from app.models.board import IssueStatus
from app.models.report import (
    AgingIssue,
    AgingIssuesReport,
    CrossProjectStatusReport,
    InactiveProject,
    InactiveProjectsReport,
    ProjectStatusCounts,
    StatusCounts,
)
from app.services.report_access_service import ProjectScope, apply_scope
from app.services.report_dates import DateRange, iso_z, utc_now
from app.services.report_math import SECONDS_PER_DAY

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 14
UNKNOWN_PROJECT = "Unknown project"


def parse_positive_days(raw: str | None, fallback: int = DEFAULT_THRESHOLD_DAYS) -> int:
    if raw is None or not str(raw).strip():
        return fallback
    try:
        parsed = int(str(raw).strip())
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


def _whole_days(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / SECONDS_PER_DAY)


def aging_issues_report(
    scope: ProjectScope,
    window: DateRange,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    now: datetime | None = None,
) -> AgingIssuesReport:
    """Open issues created in the window that are at least ``threshold_days`` old."""
    now = now or utc_now()
    with session_scope() as session:
        query = (
            session.query(IssueRecord, UserRecord.name, ProjectRecord.name)
            .outerjoin(UserRecord, UserRecord.id == IssueRecord.assignee_id)
            .outerjoin(ProjectRecord, ProjectRecord.id == IssueRecord.project_id)
            .filter(
                IssueRecord.status != IssueStatus.DONE.value,
                IssueRecord.created_at >= window.start,
                IssueRecord.created_at <= window.end,
            )
        )
        rows = apply_scope(query, IssueRecord.project_id, scope).all()
        issues = [
            AgingIssue(
                key=issue.key or "Unkeyed",
                title=issue.title,
                status=issue.status,
                assignee=assignee_name,
                age_days=_whole_days(now, issue.created_at),
                project=project_name or UNKNOWN_PROJECT,
                days_since_update=_whole_days(now, issue.updated_at),
            )
            for issue, assignee_name, project_name in rows
        ]

    stale = sorted((issue for issue in issues if issue.age_days >= threshold_days), key=lambda i: -i.age_days)
    return AgingIssuesReport(stale_count=len(stale), stale_issues=stale)


@dataclass(frozen=True)
class Activity:
    project_id: str
    at: datetime
    type: str


def _load_projects(scope: ProjectScope) -> list[tuple[str, str]]:
    with session_scope() as session:
        query = session.query(ProjectRecord.id, ProjectRecord.name)
        return [tuple(row) for row in apply_scope(query, ProjectRecord.id, scope).all()]


def _latest_by_project(column, project_column, scope: ProjectScope, cutoff: datetime) -> list[tuple[str, datetime]]:
    with session_scope() as session:
        query = session.query(project_column, func.max(column)).filter(column <= cutoff)
        query = apply_scope(query, project_column, scope).group_by(project_column)
        return [(project_id, latest) for project_id, latest in query.all() if latest is not None]


def _record_latest(latest: dict[str, Activity], rows: list[tuple[str, datetime]], activity_type: str) -> None:
    for project_id, at in rows:
        current = latest.get(project_id)
        if current is None or at > current.at:
            latest[project_id] = Activity(project_id=project_id, at=at, type=activity_type)


async def inactive_projects_report(
    scope: ProjectScope,
    window: DateRange,
    inactive_days: int = DEFAULT_THRESHOLD_DAYS,
) -> InactiveProjectsReport:
    cutoff = window.end
    window_start = cutoff - timedelta(days=inactive_days)
    projects, created, updated, standups = await asyncio.gather(
        asyncio.to_thread(_load_projects, scope),
        asyncio.to_thread(_latest_by_project, IssueRecord.created_at, IssueRecord.project_id, scope, cutoff),
        asyncio.to_thread(_latest_by_project, IssueRecord.updated_at, IssueRecord.project_id, scope, cutoff),
        asyncio.to_thread(
            _latest_by_project, StandupEntryRecord.created_at, StandupEntryRecord.project_id, scope, cutoff
        ),
    )

    latest: dict[str, Activity] = {}
    _record_latest(latest, created, "issue_created")
    _record_latest(latest, updated, "issue_updated")
    _record_latest(latest, standups, "standup")

    inactive: list[tuple[datetime, InactiveProject]] = []
    for project_id, name in projects:
        activity = latest.get(project_id)
        if activity is not None and activity.at >= window_start:
            continue
        inactive.append(
            (
                activity.at if activity else datetime.min,
                InactiveProject(
                    project_id=project_id,
                    project_name=name,
                    last_activity_at=iso_z(activity.at) if activity else None,
                    last_activity_type=activity.type if activity else None,
                ),
            )
        )
    inactive.sort(key=lambda pair: pair[0])
    logger.debug("inactive_projects_report projects=%s inactive=%s", len(projects), len(inactive))
    return InactiveProjectsReport(inactive_projects=[item for _, item in inactive], inactive_days=inactive_days)


def _add_count(counts: StatusCounts, status: str, amount: int) -> None:
    if status in StatusCounts.model_fields:
        setattr(counts, status, getattr(counts, status) + amount)


def cross_project_status_report(scope: ProjectScope, window: DateRange) -> CrossProjectStatusReport:
    with session_scope() as session:
        query = session.query(IssueRecord.project_id, IssueRecord.status, func.count(IssueRecord.id)).filter(
            IssueRecord.created_at <= window.end,
            IssueRecord.updated_at >= window.start,
            IssueRecord.updated_at <= window.end,
        )
        groups = apply_scope(query, IssueRecord.project_id, scope).group_by(
            IssueRecord.project_id, IssueRecord.status
        ).all()
        if not groups:
            return CrossProjectStatusReport(totals_by_status=StatusCounts(), projects=[])
        project_ids = sorted({project_id for project_id, _, _ in groups})
        names = dict(
            session.query(ProjectRecord.id, ProjectRecord.name).filter(ProjectRecord.id.in_(project_ids)).all()
        )

    totals = StatusCounts()
    by_project: dict[str, ProjectStatusCounts] = {}
    for project_id, status, count in groups:
        _add_count(totals, status, count)
        entry = by_project.get(project_id)
        if entry is None:
            entry = ProjectStatusCounts(
                project_id=project_id,
                project_name=names.get(project_id, UNKNOWN_PROJECT),
                counts_by_status=StatusCounts(),
            )
            by_project[project_id] = entry
        _add_count(entry.counts_by_status, status, count)

    return CrossProjectStatusReport(
        totals_by_status=totals,
        projects=sorted(by_project.values(), key=lambda item: item.project_name.lower()),
    )
