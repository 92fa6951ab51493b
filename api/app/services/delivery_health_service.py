"""Delivery health: completions, lead time, throughput and predictability."""

from __future__ import annotations

import logging

from sqlalchemy import or_

from app.adapters.board_store import IssueRecord, SprintRecord, session_scope
from app.models.report import (
    DeliveryHealthReport,
    SprintPredictability,
    SprintPredictabilityBlock,
    ThroughputPoint,
    VolatilityPredictability,
)
from app.services.report_access_service import ProjectScope, apply_scope
from app.services.report_dates import DateRange, iso_z
from app.services.report_facts import Completion, completions_in_range
from app.services.report_math import (
    ThroughputBucket,
    completion_ratio,
    days_between,
    mean,
    median,
    throughput_trend,
    volatility_score,
    weekly_throughput,
)

logger = logging.getLogger(__name__)


def empty_report() -> DeliveryHealthReport:
    return DeliveryHealthReport()


def _points(buckets: list[ThroughputBucket]) -> list[ThroughputPoint]:
    return [
        ThroughputPoint(period_start=b.period_start, issues_done=b.issues_done, points_done=b.points_done)
        for b in buckets
    ]


def _sprint_predictability(session, scope: ProjectScope, window: DateRange, completions: list[Completion]):
    sprint_query = session.query(SprintRecord).filter(
        or_(SprintRecord.start_date.is_(None), SprintRecord.start_date <= window.end),
        or_(SprintRecord.end_date.is_(None), SprintRecord.end_date >= window.start),
    )
    sprints = apply_scope(sprint_query, SprintRecord.project_id, scope).order_by(SprintRecord.start_date.asc()).all()
    if not sprints:
        return None

    issue_query = session.query(IssueRecord.id, IssueRecord.sprint_id, IssueRecord.story_points).filter(
        IssueRecord.sprint_id.in_([sprint.id for sprint in sprints])
    )
    sprint_issues = apply_scope(issue_query, IssueRecord.project_id, scope).all()
    completion_by_issue = {completion.issue_id: completion for completion in completions}

    summaries: list[SprintPredictability] = []
    for sprint in sprints:
        planned = 0
        completed = 0
        for issue_id, sprint_id, story_points in sprint_issues:
            if sprint_id != sprint.id:
                continue
            points = story_points or 0
            planned += points
            completion = completion_by_issue.get(issue_id)
            if completion is None:
                continue
            after_start = sprint.start_date is None or completion.done_at >= sprint.start_date
            before_end = sprint.end_date is None or completion.done_at <= sprint.end_date
            if after_start and before_end:
                completed += points
        summaries.append(
            SprintPredictability(
                sprint_id=sprint.id,
                sprint_name=sprint.name,
                planned_points=planned,
                completed_points=completed,
                completion_ratio=completion_ratio(completed, planned),
                start_date=iso_z(sprint.start_date),
                end_date=iso_z(sprint.end_date),
            )
        )
    return SprintPredictabilityBlock(sprints=summaries)


def delivery_health_report(scope: ProjectScope, window: DateRange) -> DeliveryHealthReport:
    with session_scope() as session:
        completions = completions_in_range(session, scope, window.start, window.end)
        predictability = _sprint_predictability(session, scope, window, completions)

    lead_times = [days_between(c.created_at, c.done_at) for c in completions]
    if predictability is None:
        weekly = weekly_throughput(completions, window.start, window.end)
        volatility, stability = volatility_score(bucket.issues_done for bucket in weekly)
        predictability = VolatilityPredictability(stability_score=stability, volatility=volatility)

    logger.debug(
        "delivery_health_report completions=%s window_days=%s predictability=%s",
        len(completions),
        window.days,
        predictability.type,
    )
    return DeliveryHealthReport(
        completed_issues=len(completions),
        completed_points=sum(c.story_points for c in completions),
        avg_lead_time_days=mean(lead_times),
        median_lead_time_days=median(lead_times),
        throughput_trend=_points(throughput_trend(completions, window.start, window.end)),
        predictability=predictability,
    )
