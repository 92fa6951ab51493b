"""Workspace report endpoints under /api/reports."""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, Depends, Header, Query

from app.services import (
    adoption_service,
    blocker_report_service,
    cycle_time_service,
    delivery_health_service,
    orphaned_work_service,
    portfolio_service,
    standup_insights_service,
    velocity_service,
)
from app.services.report_access_service import ProjectScope, is_empty_scope, normalize_project_param, resolve_project_scope
from app.services.report_dates import RangePolicy, resolve_date_range
from app.services.report_errors import ReportAccessError, Unauthenticated
from app.services.request_user import RequestUser, load_user

router = APIRouter()
logger = logging.getLogger(__name__)

NO_PROJECT_ACCESS = "No access to requested project"
DEFAULT_WINDOW_DAYS = 30


async def current_user(x_user_id: str | None = Header(None, alias="X-User-Id")) -> RequestUser:
    user = await asyncio.to_thread(load_user, x_user_id)
    if user is None:
        raise Unauthenticated()
    return user


async def _scope(user: RequestUser, project_id: str | None, denied: str = "Forbidden") -> ProjectScope:
    scope = await asyncio.to_thread(resolve_project_scope, user, project_id)
    if is_empty_scope(scope):
        raise ReportAccessError(denied)
    return scope


def _served(report: str, started: float, user: RequestUser) -> None:
    logger.info(
        "report_served report=%s user=%s elapsed_ms=%.2f",
        report,
        user.id,
        (time.perf_counter() - started) * 1000.0,
    )


@router.get("/reports/cycle-time")
async def get_cycle_time(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await asyncio.to_thread(cycle_time_service.cycle_time_report, scope, window)
    _served("cycle-time", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/delivery-health")
async def get_delivery_health(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, default_days=DEFAULT_WINDOW_DAYS)
    scope = await asyncio.to_thread(resolve_project_scope, user, project_id)
    if is_empty_scope(scope):
        report = delivery_health_service.empty_report()
    else:
        report = await asyncio.to_thread(delivery_health_service.delivery_health_report, scope, window)
    _served("delivery-health", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/blocker-themes")
async def get_blocker_themes(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await asyncio.to_thread(blocker_report_service.blocker_themes_report, scope, window)
    _served("blocker-themes", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/blocker-aggregation")
async def get_blocker_aggregation(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await asyncio.to_thread(blocker_report_service.blocker_aggregation_report, scope, window)
    _served("blocker-aggregation", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/user-adoption")
async def get_user_adoption(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, default_days=DEFAULT_WINDOW_DAYS)
    scope = await _scope(user, project_id, NO_PROJECT_ACCESS)
    report = await adoption_service.user_adoption_report(scope, window)
    _served("user-adoption", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/role-distribution")
async def get_role_distribution(
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    scope = await _scope(user, project_id, NO_PROJECT_ACCESS)
    report = await asyncio.to_thread(adoption_service.role_distribution_report, scope)
    _served("role-distribution", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/orphaned-work")
async def get_orphaned_work(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, default_days=DEFAULT_WINDOW_DAYS)
    scope = await _scope(user, project_id, NO_PROJECT_ACCESS)
    report = await orphaned_work_service.orphaned_work_report(scope, window)
    _served("orphaned-work", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/velocity-trend")
async def get_velocity_trend(
    project_id: str | None = Query(None, alias="projectId"),
    limit: str | None = Query(None, description="Completed sprints to return (1-50, default 10)"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    scope = await asyncio.to_thread(resolve_project_scope, user, project_id)
    if is_empty_scope(scope):
        return {"sprints": []}
    report = await asyncio.to_thread(
        velocity_service.velocity_trend_report, scope, velocity_service.clamp_limit(limit)
    )
    _served("velocity-trend", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/sprint-burndown")
async def get_sprint_burndown(
    sprint_id: str | None = Query(None, alias="sprintId"),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    report = await asyncio.to_thread(
        velocity_service.sprint_burndown_report,
        user,
        (sprint_id or "").strip() or None,
        normalize_project_param(project_id),
    )
    _served("sprint-burndown", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/standup-insights")
async def get_standup_insights(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await standup_insights_service.standup_insights_report(scope, window)
    _served("standup-insights", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/aging-issues")
async def get_aging_issues(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    threshold_days: str | None = Query(None, alias="thresholdDays"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await asyncio.to_thread(
        portfolio_service.aging_issues_report,
        scope,
        window,
        portfolio_service.parse_positive_days(threshold_days),
    )
    _served("aging-issues", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/inactive-projects")
async def get_inactive_projects(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    inactive_days: str | None = Query(None, alias="inactiveDays"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, policy=RangePolicy.STRICT)
    scope = await _scope(user, project_id)
    report = await portfolio_service.inactive_projects_report(
        scope, window, portfolio_service.parse_positive_days(inactive_days)
    )
    _served("inactive-projects", started, user)
    return report.model_dump(mode="json", by_alias=True)


@router.get("/reports/cross-project-status")
async def get_cross_project_status(
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    project_id: str | None = Query(None, alias="projectId"),
    user: RequestUser = Depends(current_user),
) -> dict:
    started = time.perf_counter()
    window = resolve_date_range(from_, to, default_days=DEFAULT_WINDOW_DAYS)
    scope = await _scope(user, project_id, NO_PROJECT_ACCESS)
    report = await asyncio.to_thread(portfolio_service.cross_project_status_report, scope, window)
    _served("cross-project-status", started, user)
    return report.model_dump(mode="json", by_alias=True)
