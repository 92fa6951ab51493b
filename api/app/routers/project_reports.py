"""Project-scoped report endpoints under /api/projects/{project_id}/reports.

Responses use the ``{"ok": true, "data": ...}`` envelope, and errors answer as
``{"ok": false, "message": ...}``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time

from fastapi import APIRouter, Depends, Header, Query, Request

from app.models.report import (
    BurndownPoint,
    ProjectCycleTimeReport,
    ProjectReportEnvelope,
    ProjectStandupInsightsReport,
    ThemeCount,
    VelocityPoint,
)
from app.models.sprint_health import SprintHealthReport
from app.services import (
    blocker_report_service,
    cycle_time_service,
    sprint_health_service,
    standup_insights_service,
    velocity_service,
)
from app.services.report_access_service import normalize_project_param, require_project_role
from app.services.report_dates import DateRange, resolve_project_range
from app.services.report_errors import ReportError, Unauthenticated
from app.services.request_user import RequestUser, load_user

router = APIRouter()
logger = logging.getLogger(__name__)


def envelope_errors(handler):
    @functools.wraps(handler)
    async def wrapper(*args, **kwargs):
        try:
            return await handler(*args, **kwargs)
        except ReportError as exc:
            exc.envelope = True
            raise

    return wrapper


async def project_user(x_user_id: str | None = Header(None, alias="X-User-Id")) -> RequestUser:
    user = await asyncio.to_thread(load_user, x_user_id)
    if user is None:
        raise Unauthenticated(envelope=True)
    return user


async def _authorized_window(
    user: RequestUser, project_id: str, raw_from: str | None, raw_to: str | None
) -> DateRange:
    await asyncio.to_thread(require_project_role, user, project_id)
    return resolve_project_range(raw_from, raw_to)


def _served(report: str, project_id: str, started: float) -> None:
    logger.info(
        "project_report_served report=%s project=%s elapsed_ms=%.2f",
        report,
        project_id,
        (time.perf_counter() - started) * 1000.0,
    )


@router.get("/projects/{project_id}/reports/burndown")
@envelope_errors
async def get_project_burndown(
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    sprint_id: str | None = Query(None, alias="sprintId"),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    sprint = normalize_project_param(sprint_id)
    if sprint:
        window = await asyncio.to_thread(velocity_service.sprint_window, project_id, sprint, window)
    points = await asyncio.to_thread(velocity_service.project_burndown, project_id, window, sprint)
    _served("burndown", project_id, started)
    return ProjectReportEnvelope[list[BurndownPoint]](data=points).model_dump(mode="json", by_alias=True)


@router.get("/projects/{project_id}/reports/velocity")
@envelope_errors
async def get_project_velocity(
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    sprint_id: str | None = Query(None, alias="sprintId"),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    points = await asyncio.to_thread(
        velocity_service.project_velocity, project_id, window, normalize_project_param(sprint_id)
    )
    _served("velocity", project_id, started)
    return ProjectReportEnvelope[list[VelocityPoint]](data=points).model_dump(mode="json", by_alias=True)


@router.get("/projects/{project_id}/reports/cycle-time")
@envelope_errors
async def get_project_cycle_time(
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    sprint_id: str | None = Query(None, alias="sprintId"),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    report = await asyncio.to_thread(
        cycle_time_service.project_cycle_time, project_id, window, normalize_project_param(sprint_id)
    )
    _served("cycle-time", project_id, started)
    return ProjectReportEnvelope[ProjectCycleTimeReport](data=report).model_dump(mode="json", by_alias=True)


@router.get("/projects/{project_id}/reports/blocker-themes")
@envelope_errors
async def get_project_blocker_themes(
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    themes = await asyncio.to_thread(blocker_report_service.project_blocker_themes, project_id, window)
    _served("blocker-themes", project_id, started)
    return ProjectReportEnvelope[list[ThemeCount]](data=themes).model_dump(mode="json", by_alias=True)


@router.get("/projects/{project_id}/reports/sprint-health")
@envelope_errors
async def get_project_sprint_health(
    request: Request,
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    capabilities = getattr(request.app.state, "capabilities", None)
    report = await asyncio.to_thread(sprint_health_service.sprint_health_report, project_id, window, capabilities)
    _served("sprint-health", project_id, started)
    return ProjectReportEnvelope[SprintHealthReport](data=report).model_dump(mode="json", by_alias=True)


@router.get("/projects/{project_id}/reports/standup-insights")
@envelope_errors
async def get_project_standup_insights(
    request: Request,
    project_id: str,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
    user: RequestUser = Depends(project_user),
) -> dict:
    started = time.perf_counter()
    window = await _authorized_window(user, project_id, from_, to)
    capabilities = getattr(request.app.state, "capabilities", None)
    report = await asyncio.to_thread(
        standup_insights_service.project_standup_insights, project_id, window, capabilities
    )
    _served("standup-insights", project_id, started)
    return ProjectReportEnvelope[ProjectStandupInsightsReport](data=report).model_dump(mode="json", by_alias=True)
