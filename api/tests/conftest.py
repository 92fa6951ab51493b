"""Pytest configuration and fixtures.

Every test gets its own SQLite board database; the ``seed`` fixture writes
rows straight through the store's sessions.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.adapters import board_store  # noqa: E402
from app.adapters.board_store import (  # noqa: E402
    IssueHistoryRecord,
    IssueRecord,
    ProjectMemberRecord,
    ProjectRecord,
    SprintRecord,
    StandupActionStateRecord,
    StandupAttendanceRecord,
    StandupEntryIssueLinkRecord,
    StandupEntryRecord,
    StandupEntryResearchLinkRecord,
    StandupQualityDailyRecord,
    StandupSummaryRecord,
    UserRecord,
    session_scope,
)
from app.models.board import (  # noqa: E402
    ActionState,
    AttendanceStatus,
    IssueHistoryField,
    IssueStatus,
    IssueType,
    Role,
    SprintStatus,
)


@pytest.fixture(autouse=True)
def _board_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    # Per-test database; module-level engine cache must not leak between tests.
    for key in ("DATABASE_URL", "REPORT_STANDUP_QUALITY", "REPORT_LATE_UPDATE_HOUR", "API_LOG_ALL_REQUESTS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BBOARD_DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'bboard_test.db'}")
    board_store.reset_engine_cache()
    board_store.ensure_schema()
    yield
    board_store.reset_engine_cache()


def _value(item):
    return getattr(item, "value", item)


class BoardSeeder:
    """Insert board rows for a test and hand back their ids."""

    def _add(self, record, id: str | None = None) -> str:
        if id is not None:
            record.id = id
        with session_scope() as session:
            session.add(record)
            session.flush()
            return record.id

    def user(self, name: str = "User", role: Role = Role.DEV, email: str | None = None, id: str | None = None) -> str:
        return self._add(UserRecord(name=name, email=email, role=_value(role)), id)

    def project(self, name: str = "Project", key: str = "PRJ", id: str | None = None) -> str:
        return self._add(ProjectRecord(name=name, key=key), id)

    def member(self, project_id: str, user_id: str, role: Role = Role.DEV) -> str:
        return self._add(ProjectMemberRecord(project_id=project_id, user_id=user_id, role=_value(role)))

    def sprint(
        self,
        project_id: str,
        name: str = "Sprint 1",
        status: SprintStatus = SprintStatus.ACTIVE,
        start: datetime | None = None,
        end: datetime | None = None,
        id: str | None = None,
    ) -> str:
        return self._add(
            SprintRecord(project_id=project_id, name=name, status=_value(status), start_date=start, end_date=end),
            id,
        )

    def issue(
        self,
        project_id: str,
        title: str = "Issue",
        *,
        key: str | None = None,
        type: IssueType = IssueType.TASK,
        status: IssueStatus = IssueStatus.TODO,
        story_points: int | None = None,
        sprint_id: str | None = None,
        epic_id: str | None = None,
        assignee_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> str:
        created_at = created_at or datetime.utcnow()
        return self._add(
            IssueRecord(
                project_id=project_id,
                title=title,
                key=key,
                type=_value(type),
                status=_value(status),
                story_points=story_points,
                sprint_id=sprint_id,
                epic_id=epic_id,
                assignee_id=assignee_id,
                created_at=created_at,
                updated_at=updated_at or created_at,
            )
        )

    def status_change(self, issue_id: str, new_status: IssueStatus, at: datetime, old_status=None) -> str:
        return self._add(
            IssueHistoryRecord(
                issue_id=issue_id,
                field=IssueHistoryField.STATUS.value,
                old_value=_value(old_status) if old_status else None,
                new_value=_value(new_status),
                created_at=at,
            )
        )

    def sprint_change(self, issue_id: str, old_sprint: str | None, new_sprint: str | None, at: datetime) -> str:
        return self._add(
            IssueHistoryRecord(
                issue_id=issue_id,
                field=IssueHistoryField.SPRINT.value,
                old_value=old_sprint,
                new_value=new_sprint,
                created_at=at,
            )
        )

    def standup(
        self,
        project_id: str,
        user_id: str,
        date: datetime,
        *,
        created_at: datetime | None = None,
        summary_today: str | None = None,
        progress_since_yesterday: str | None = None,
        blockers: str | None = None,
        dependencies: str | None = None,
        notes: str | None = None,
    ) -> str:
        return self._add(
            StandupEntryRecord(
                project_id=project_id,
                user_id=user_id,
                date=date,
                created_at=created_at or date,
                summary_today=summary_today,
                progress_since_yesterday=progress_since_yesterday,
                blockers=blockers,
                dependencies=dependencies,
                notes=notes,
            )
        )

    def issue_link(self, entry_id: str, issue_id: str) -> str:
        return self._add(StandupEntryIssueLinkRecord(standup_entry_id=entry_id, issue_id=issue_id))

    def research_link(self, entry_id: str, research_item_id: str) -> str:
        return self._add(StandupEntryResearchLinkRecord(standup_entry_id=entry_id, research_item_id=research_item_id))

    def attendance(
        self,
        project_id: str,
        user_id: str | None,
        date: datetime,
        status: AttendanceStatus = AttendanceStatus.ABSENT,
    ) -> str:
        return self._add(
            StandupAttendanceRecord(project_id=project_id, user_id=user_id, date=date, status=_value(status))
        )

    def summary(self, project_id: str, date: datetime, text: str) -> str:
        return self._add(StandupSummaryRecord(project_id=project_id, date=date, summary=text))

    def action(
        self,
        project_id: str,
        user_id: str,
        date: datetime,
        state: ActionState = ActionState.OPEN,
        action_id: str = "action",
        updated_at: datetime | None = None,
    ) -> str:
        return self._add(
            StandupActionStateRecord(
                project_id=project_id,
                user_id=user_id,
                action_id=action_id,
                date=date,
                state=_value(state),
                created_at=date,
                updated_at=updated_at or date,
            )
        )

    def quality(self, project_id: str, date: datetime, score: float) -> str:
        return self._add(StandupQualityDailyRecord(project_id=project_id, date=date, quality_score=score))


@pytest.fixture
def seed() -> BoardSeeder:
    return BoardSeeder()


@pytest_asyncio.fixture
async def client():
    """ASGI client against the report app."""
    from app.main import app

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
