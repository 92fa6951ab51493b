"""Read-only fact extraction over the board store.

Helpers take an open ``Session`` and a project scope and return plain
dataclasses, so ORM rows never escape the session that loaded them.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from app.adapters.board_store import (
    IssueHistoryRecord,
    IssueRecord,
    ProjectMemberRecord,
    StandupEntryRecord,
    UserRecord,
)
from app.models.board import IssueHistoryField, IssueStatus
from app.services.report_access_service import ProjectScope, apply_scope

StatusHistory = list[tuple[str | None, datetime]]

_STARTED_STATUSES = {IssueStatus.IN_PROGRESS.value}
_STARTED_OR_LATER = {IssueStatus.IN_PROGRESS.value, IssueStatus.IN_REVIEW.value, IssueStatus.DONE.value}


@dataclass(frozen=True)
class Completion:
    issue_id: str
    project_id: str
    sprint_id: str | None
    story_points: int
    created_at: datetime
    done_at: datetime


@dataclass(frozen=True)
class StandupFact:
    id: str
    project_id: str
    user_id: str
    date: datetime
    created_at: datetime
    blockers: str | None
    dependencies: str | None


@dataclass(frozen=True)
class MemberFact:
    project_id: str
    user_id: str
    role: str
    name: str
    email: str | None


def _done_history_exists():
    return exists().where(
        and_(
            IssueHistoryRecord.issue_id == IssueRecord.id,
            IssueHistoryRecord.field == IssueHistoryField.STATUS.value,
            IssueHistoryRecord.new_value == IssueStatus.DONE.value,
        )
    )


def completions_in_range(session: Session, scope: ProjectScope, start: datetime, end: datetime) -> list[Completion]:
    """Issues completed in ``[start, end]``.

    The first STATUS->DONE transition inside the window wins. Issues that are
    DONE without any such transition fall back to ``updated_at``.
    """
    history_query = (
        session.query(IssueHistoryRecord, IssueRecord)
        .join(IssueRecord, IssueRecord.id == IssueHistoryRecord.issue_id)
        .filter(
            IssueHistoryRecord.field == IssueHistoryField.STATUS.value,
            IssueHistoryRecord.new_value == IssueStatus.DONE.value,
            IssueHistoryRecord.created_at >= start,
            IssueHistoryRecord.created_at <= end,
        )
        .order_by(IssueHistoryRecord.created_at.asc())
    )
    history_rows = apply_scope(history_query, IssueRecord.project_id, scope).all()

    by_issue: dict[str, Completion] = {}
    for history, issue in history_rows:
        if issue.id in by_issue:
            continue
        by_issue[issue.id] = Completion(
            issue_id=issue.id,
            project_id=issue.project_id,
            sprint_id=issue.sprint_id,
            story_points=issue.story_points or 0,
            created_at=issue.created_at,
            done_at=history.created_at,
        )

    fallback_query = session.query(IssueRecord).filter(
        IssueRecord.status == IssueStatus.DONE.value,
        IssueRecord.updated_at >= start,
        IssueRecord.updated_at <= end,
        ~_done_history_exists(),
    )
    for issue in apply_scope(fallback_query, IssueRecord.project_id, scope).all():
        if issue.id in by_issue:
            continue
        by_issue[issue.id] = Completion(
            issue_id=issue.id,
            project_id=issue.project_id,
            sprint_id=issue.sprint_id,
            story_points=issue.story_points or 0,
            created_at=issue.created_at,
            done_at=issue.updated_at,
        )
    return list(by_issue.values())


def status_histories(session: Session, issue_ids: Sequence[str]) -> dict[str, StatusHistory]:
    out: dict[str, StatusHistory] = defaultdict(list)
    if not issue_ids:
        return out
    rows = (
        session.query(IssueHistoryRecord.issue_id, IssueHistoryRecord.new_value, IssueHistoryRecord.created_at)
        .filter(
            IssueHistoryRecord.issue_id.in_(list(issue_ids)),
            IssueHistoryRecord.field == IssueHistoryField.STATUS.value,
        )
        .order_by(IssueHistoryRecord.created_at.asc())
        .all()
    )
    for issue_id, new_value, created_at in rows:
        out[issue_id].append((new_value, created_at))
    return out


def first_done_at(history: Iterable[tuple[str | None, datetime]], status: str, updated_at: datetime) -> datetime | None:
    for new_value, created_at in history:
        if new_value == IssueStatus.DONE.value:
            return created_at
    if status == IssueStatus.DONE.value:
        return updated_at
    return None


def first_started_at(
    history: Iterable[tuple[str | None, datetime]],
    created_at: datetime,
    *,
    include_review_and_done: bool = False,
) -> datetime:
    wanted = _STARTED_OR_LATER if include_review_and_done else _STARTED_STATUSES
    for new_value, changed_at in history:
        if new_value in wanted:
            return changed_at
    return created_at


def standup_entries(
    session: Session,
    scope: ProjectScope,
    start: datetime,
    end: datetime,
) -> list[StandupFact]:
    query = session.query(StandupEntryRecord).filter(
        StandupEntryRecord.date >= start,
        StandupEntryRecord.date <= end,
    )
    rows = apply_scope(query, StandupEntryRecord.project_id, scope).order_by(StandupEntryRecord.date.asc()).all()
    return [
        StandupFact(
            id=row.id,
            project_id=row.project_id,
            user_id=row.user_id,
            date=row.date,
            created_at=row.created_at,
            blockers=row.blockers,
            dependencies=row.dependencies,
        )
        for row in rows
    ]


def project_memberships(session: Session, scope: ProjectScope) -> list[MemberFact]:
    query = session.query(ProjectMemberRecord, UserRecord).join(
        UserRecord, UserRecord.id == ProjectMemberRecord.user_id
    )
    rows = apply_scope(query, ProjectMemberRecord.project_id, scope).all()
    return [
        MemberFact(
            project_id=member.project_id,
            user_id=member.user_id,
            role=member.role,
            name=user.name,
            email=user.email,
        )
        for member, user in rows
    ]
