"""Cycle-time reports: workspace hours histogram and project day-level percentiles."""

from __future__ import annotations

import logging

from app.adapters.board_store import IssueRecord, session_scope
from app.models.report import (
    CycleTimeBucket,
    CycleTimeItem,
    CycleTimePercentiles,
    CycleTimePoint,
    CycleTimeReport,
    CycleTimeSummary,
    ProjectCycleTimeReport,
)
from app.services.report_access_service import ProjectScope, apply_scope
from app.services.report_dates import DateRange, iso_z
from app.services.report_facts import first_done_at, first_started_at, status_histories
from app.services.report_math import (
    bucketize_hours,
    days_between,
    hours_between,
    optional_percentile,
    percentile,
    round1,
    round_int,
)

logger = logging.getLogger(__name__)

ITEM_LIMIT = 20


def cycle_time_report(scope: ProjectScope, window: DateRange) -> CycleTimeReport:
    with session_scope() as session:
        issues = apply_scope(session.query(IssueRecord), IssueRecord.project_id, scope).all()
        histories = status_histories(session, [issue.id for issue in issues])

        items: list[CycleTimeItem] = []
        for issue in issues:
            history = histories.get(issue.id, [])
            completed = first_done_at(history, issue.status, issue.updated_at)
            if completed is None or not window.contains(completed):
                continue
            started = first_started_at(history, issue.created_at)
            items.append(
                CycleTimeItem(
                    issue_key=issue.key or "Unkeyed",
                    title=issue.title,
                    cycle_hours=max(hours_between(started, completed), 0.0),
                    completed_at=iso_z(completed),
                )
            )

    hours = [item.cycle_hours for item in items]
    sample_size = len(hours)
    summary = CycleTimeSummary(
        median_hours=round1(percentile(hours, 50)),
        p75_hours=round1(percentile(hours, 75)),
        avg_hours=round1(sum(hours) / sample_size) if sample_size else 0.0,
        sample_size=sample_size,
    )
    buckets = [CycleTimeBucket(label=bucket.label, count=bucket.count) for bucket in bucketize_hours(hours)]
    items.sort(key=lambda item: item.cycle_hours, reverse=True)
    logger.debug("cycle_time_report sample_size=%s", sample_size)
    return CycleTimeReport(summary=summary, buckets=buckets, items=items[:ITEM_LIMIT])


def project_cycle_time(project_id: str, window: DateRange, sprint_id: str | None = None) -> ProjectCycleTimeReport:
    with session_scope() as session:
        query = session.query(IssueRecord).filter(
            IssueRecord.project_id == project_id,
            IssueRecord.created_at <= window.end,
        )
        if sprint_id:
            query = query.filter(IssueRecord.sprint_id == sprint_id)
        issues = query.all()
        if not issues:
            return ProjectCycleTimeReport(points=[], summary=CycleTimePercentiles())
        histories = status_histories(session, [issue.id for issue in issues])

        points: list[CycleTimePoint] = []
        for issue in issues:
            history = histories.get(issue.id, [])
            done_at = first_done_at(history, issue.status, issue.updated_at)
            if done_at is None or not window.contains(done_at):
                continue
            started_at = first_started_at(history, issue.created_at, include_review_and_done=True)
            points.append(
                CycleTimePoint(
                    issue_id=issue.id,
                    key=issue.key or issue.id,
                    title=issue.title,
                    started_at=iso_z(started_at),
                    done_at=iso_z(done_at),
                    cycle_time_days=max(0, round_int(days_between(started_at, done_at))),
                )
            )

    durations = sorted(point.cycle_time_days for point in points if point.cycle_time_days is not None)
    return ProjectCycleTimeReport(
        points=points,
        summary=CycleTimePercentiles(
            median=optional_percentile(durations, 50),
            p75=optional_percentile(durations, 75),
            p90=optional_percentile(durations, 90),
        ),
    )
