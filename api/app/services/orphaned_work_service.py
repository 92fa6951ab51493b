"""Orphaned work: issues and standups missing an owner, epic, sprint or link."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import exists

from app.adapters.board_store import (
    IssueRecord,
    ProjectRecord,
    StandupEntryIssueLinkRecord,
    StandupEntryRecord,
    StandupEntryResearchLinkRecord,
    UserRecord,
    session_scope,
)
from app.models.board import IssueStatus, IssueType
from app.models.report import (
    OrphanedIssueSample,
    OrphanedStandupSample,
    OrphanedWorkCounts,
    OrphanedWorkReport,
    OrphanedWorkSamples,
)
from app.services.report_access_service import ProjectScope, apply_scope
from app.services.report_dates import DateRange, iso_day, iso_z

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 20
UNKNOWN_PROJECT = "Unknown project"
UNKNOWN_USER = "Unknown user"

_ACTIVE_STATUSES = (IssueStatus.IN_PROGRESS.value, IssueStatus.IN_REVIEW.value)


def _issue_criteria(kind: str) -> list:
    if kind == "unassigned":
        return [IssueRecord.assignee_id.is_(None), IssueRecord.status != IssueStatus.DONE.value]
    if kind == "missing_epic":
        return [
            IssueRecord.type == IssueType.STORY.value,
            IssueRecord.epic_id.is_(None),
            IssueRecord.status != IssueStatus.DONE.value,
        ]
    if kind == "unsprinted_active":
        return [IssueRecord.sprint_id.is_(None), IssueRecord.status.in_(_ACTIVE_STATUSES)]
    raise ValueError(f"unknown orphaned issue kind: {kind}")


def _issue_bucket(kind: str, scope: ProjectScope, window: DateRange) -> tuple[int, list[OrphanedIssueSample]]:
    with session_scope() as session:
        query = session.query(IssueRecord, ProjectRecord.name).outerjoin(
            ProjectRecord, ProjectRecord.id == IssueRecord.project_id
        )
        query = query.filter(
            *_issue_criteria(kind),
            IssueRecord.updated_at >= window.start,
            IssueRecord.updated_at <= window.end,
        )
        query = apply_scope(query, IssueRecord.project_id, scope)
        count = query.count()
        rows = query.order_by(IssueRecord.updated_at.desc()).limit(SAMPLE_LIMIT).all()
        samples = [
            OrphanedIssueSample(
                id=issue.id,
                key=issue.key,
                title=issue.title,
                status=issue.status,
                type=issue.type,
                project_id=issue.project_id,
                project_name=project_name or UNKNOWN_PROJECT,
                updated_at=iso_z(issue.updated_at),
            )
            for issue, project_name in rows
        ]
    return count, samples


def _unlinked_standups(scope: ProjectScope, window: DateRange) -> tuple[int, list[OrphanedStandupSample]]:
    has_issue = exists().where(StandupEntryIssueLinkRecord.standup_entry_id == StandupEntryRecord.id)
    has_research = exists().where(StandupEntryResearchLinkRecord.standup_entry_id == StandupEntryRecord.id)
    with session_scope() as session:
        query = (
            session.query(StandupEntryRecord, ProjectRecord.name, UserRecord.name, UserRecord.email)
            .outerjoin(ProjectRecord, ProjectRecord.id == StandupEntryRecord.project_id)
            .outerjoin(UserRecord, UserRecord.id == StandupEntryRecord.user_id)
            .filter(
                StandupEntryRecord.date >= window.start,
                StandupEntryRecord.date <= window.end,
                ~has_issue,
                ~has_research,
            )
        )
        query = apply_scope(query, StandupEntryRecord.project_id, scope)
        count = query.count()
        rows = query.order_by(StandupEntryRecord.date.desc()).limit(SAMPLE_LIMIT).all()
        samples = []
        for entry, project_name, user_name, user_email in rows:
            summary = entry.summary_today
            if summary is None:
                summary = entry.progress_since_yesterday
            if summary is None:
                summary = entry.notes
            samples.append(
                OrphanedStandupSample(
                    id=entry.id,
                    date=iso_day(entry.date),
                    project_id=entry.project_id,
                    project_name=project_name or UNKNOWN_PROJECT,
                    user_name=user_name or user_email or UNKNOWN_USER,
                    summary=summary,
                )
            )
    return count, samples


async def orphaned_work_report(scope: ProjectScope, window: DateRange) -> OrphanedWorkReport:
    unassigned, missing_epic, unsprinted, unlinked = await asyncio.gather(
        asyncio.to_thread(_issue_bucket, "unassigned", scope, window),
        asyncio.to_thread(_issue_bucket, "missing_epic", scope, window),
        asyncio.to_thread(_issue_bucket, "unsprinted_active", scope, window),
        asyncio.to_thread(_unlinked_standups, scope, window),
    )
    logger.debug(
        "orphaned_work_report unassigned=%s missing_epic=%s unsprinted=%s unlinked=%s",
        unassigned[0],
        missing_epic[0],
        unsprinted[0],
        unlinked[0],
    )
    return OrphanedWorkReport(
        counts=OrphanedWorkCounts(
            unassigned=unassigned[0],
            missing_epic=missing_epic[0],
            unsprinted_active=unsprinted[0],
            unlinked_standups=unlinked[0],
        ),
        samples=OrphanedWorkSamples(
            unassigned=unassigned[1],
            missing_epic=missing_epic[1],
            unsprinted_active=unsprinted[1],
            unlinked_standups=unlinked[1],
        ),
    )
