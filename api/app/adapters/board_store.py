"""SQLAlchemy-backed board store: records, engine cache and sessions.

The reporting services only read from these tables. Writes happen in the CRUD
layer (and in tests, which seed rows through ``session_scope``).
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    inspect,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import NullPool

from app.models.board import (
    ActionState,
    AttendanceStatus,
    IssuePriority,
    IssueStatus,
    Role,
    SprintStatus,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=Role.VIEWER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ProjectRecord(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ProjectMemberRecord(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=Role.VIEWER.value)


class SprintRecord(Base):
    __tablename__ = "sprints"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=SprintStatus.PLANNED.value)
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class IssueRecord(Base):
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    key: Mapped[str | None] = mapped_column(String, nullable=True)
    sprint_id: Mapped[str | None] = mapped_column(ForeignKey("sprints.id"), nullable=True, index=True)
    epic_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=IssueStatus.TODO.value, index=True)
    priority: Mapped[str] = mapped_column(String, nullable=False, default=IssuePriority.MEDIUM.value)
    story_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assignee_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class IssueHistoryRecord(Base):
    __tablename__ = "issue_history"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    issue_id: Mapped[str] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)
    field: Mapped[str] = mapped_column(String, nullable=False)
    old_value: Mapped[str | None] = mapped_column(String, nullable=True)
    new_value: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class StandupEntryRecord(Base):
    __tablename__ = "daily_standup_entries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    summary_today: Mapped[str | None] = mapped_column(Text, nullable=True)
    progress_since_yesterday: Mapped[str | None] = mapped_column(Text, nullable=True)
    blockers: Mapped[str | None] = mapped_column(Text, nullable=True)
    dependencies: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class StandupEntryIssueLinkRecord(Base):
    __tablename__ = "standup_entry_issue_links"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    standup_entry_id: Mapped[str] = mapped_column(
        ForeignKey("daily_standup_entries.id"), nullable=False, index=True
    )
    issue_id: Mapped[str] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)


class StandupEntryResearchLinkRecord(Base):
    __tablename__ = "standup_entry_research_links"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    standup_entry_id: Mapped[str] = mapped_column(
        ForeignKey("daily_standup_entries.id"), nullable=False, index=True
    )
    research_item_id: Mapped[str] = mapped_column(String, nullable=False)


class StandupAttendanceRecord(Base):
    __tablename__ = "standup_attendance"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=AttendanceStatus.PRESENT.value)


class StandupSummaryRecord(Base):
    __tablename__ = "standup_summaries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)


class StandupActionStateRecord(Base):
    __tablename__ = "standup_action_states"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    action_id: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    state: Mapped[str] = mapped_column(String, nullable=False, default=ActionState.OPEN.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class StandupQualityDailyRecord(Base):
    __tablename__ = "standup_quality_daily"
    __table_args__ = (UniqueConstraint("project_id", "date", name="uq_standup_quality_day"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    quality_score: Mapped[float] = mapped_column(Float, nullable=False)


# Tables that may be missing in older deployments; reports degrade without them.
OPTIONAL_TABLES = (StandupQualityDailyRecord.__table__,)
CORE_TABLES = tuple(table for table in Base.metadata.sorted_tables if table not in OPTIONAL_TABLES)


@dataclass(frozen=True)
class ReportCapabilities:
    standup_quality: bool = False


_ENGINE_CACHE: dict[str, Any] = {"url": "", "engine": None, "sessionmaker": None}


def _default_sqlite_path() -> Path:
    return Path(__file__).resolve().parents[2] / "logs" / "bboard.db"


def database_url() -> str:
    configured = os.getenv("BBOARD_DATABASE_URL") or os.getenv("DATABASE_URL")
    if configured:
        return configured
    sqlite_path = _default_sqlite_path()
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+pysqlite:///{sqlite_path}"


def _create_engine(url: str):
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = NullPool
    return create_engine(url, **kwargs)


def engine():
    url = database_url()
    if _ENGINE_CACHE["engine"] is not None and _ENGINE_CACHE["url"] == url:
        return _ENGINE_CACHE["engine"]
    if _ENGINE_CACHE["engine"] is not None:
        _ENGINE_CACHE["engine"].dispose()
    created = _create_engine(url)
    SessionLocal = sessionmaker(bind=created, autocommit=False, autoflush=False, expire_on_commit=False)
    _ENGINE_CACHE["url"] = url
    _ENGINE_CACHE["engine"] = created
    _ENGINE_CACHE["sessionmaker"] = SessionLocal
    return created


def reset_engine_cache() -> None:
    cached = _ENGINE_CACHE.get("engine")
    if cached is not None:
        cached.dispose()
    _ENGINE_CACHE["url"] = ""
    _ENGINE_CACHE["engine"] = None
    _ENGINE_CACHE["sessionmaker"] = None


@contextmanager
def session_scope() -> Iterator[Session]:
    engine()
    session = _ENGINE_CACHE["sessionmaker"]()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_schema(include_optional: bool = True) -> None:
    tables = list(CORE_TABLES)
    if include_optional:
        tables.extend(OPTIONAL_TABLES)
    Base.metadata.create_all(bind=engine(), tables=tables)


def drop_schema() -> None:
    Base.metadata.drop_all(bind=engine())


def ping() -> bool:
    try:
        with engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("board_store_ping_failed url=%s", _ENGINE_CACHE.get("url"), exc_info=True)
        return False
    return True


def _env_override(name: str) -> bool | None:
    raw = str(os.getenv(name, "")).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return None


def detect_capabilities() -> ReportCapabilities:
    """Resolve optional-table capabilities once; env overrides win over schema inspection."""
    override = _env_override("REPORT_STANDUP_QUALITY")
    if override is not None:
        return ReportCapabilities(standup_quality=override)
    try:
        has_quality = inspect(engine()).has_table(StandupQualityDailyRecord.__tablename__)
    except Exception:
        logger.warning("board_store_capability_probe_failed", exc_info=True)
        has_quality = False
    return ReportCapabilities(standup_quality=has_quality)
