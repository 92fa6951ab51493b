"""Project scoping for report queries.

A scope is either ``None`` (unrestricted, leadership without a project filter)
or a list of project ids. An empty list means the caller can see nothing and
the report must not touch the tables.
"""

from __future__ import annotations

from typing import Iterable

from app.adapters.board_store import ProjectMemberRecord, ProjectRecord, session_scope
from app.models.board import LEADERSHIP_ROLES, Role
from app.services.report_errors import ReportAccessError, ReportNotFound
from app.services.request_user import RequestUser

ProjectScope = list[str] | None


def normalize_project_param(raw: str | None) -> str | None:
    cleaned = (raw or "").strip()
    if not cleaned or cleaned.lower() == "all":
        return None
    return cleaned


def is_leadership(user: RequestUser) -> bool:
    return user.role in LEADERSHIP_ROLES


def member_project_ids(user_id: str) -> list[str]:
    with session_scope() as session:
        rows = (
            session.query(ProjectMemberRecord.project_id)
            .filter(ProjectMemberRecord.user_id == user_id)
            .order_by(ProjectMemberRecord.project_id.asc())
            .all()
        )
    return [row[0] for row in rows]


def resolve_project_scope(user: RequestUser, requested_project_id: str | None) -> ProjectScope:
    requested = normalize_project_param(requested_project_id)
    if is_leadership(user):
        return [requested] if requested else None
    memberships = member_project_ids(user.id)
    if requested:
        return [requested] if requested in memberships else []
    return memberships


def is_empty_scope(scope: ProjectScope) -> bool:
    return scope is not None and len(scope) == 0


def apply_scope(query, column, scope: ProjectScope):
    """Restrict a SQLAlchemy query to the scoped project ids (no-op when unrestricted)."""
    if scope is None:
        return query
    return query.filter(column.in_(scope))


def membership_role(user_id: str, project_id: str) -> Role | None:
    with session_scope() as session:
        row = (
            session.query(ProjectMemberRecord.role)
            .filter(ProjectMemberRecord.user_id == user_id, ProjectMemberRecord.project_id == project_id)
            .first()
        )
    if row is None:
        return None
    try:
        return Role(row[0])
    except ValueError:
        return None


def effective_project_role(user: RequestUser, member_role: Role | None) -> Role | None:
    if user.role == Role.ADMIN:
        return Role.ADMIN
    return member_role


def project_exists(project_id: str) -> bool:
    with session_scope() as session:
        return session.get(ProjectRecord, project_id) is not None


def require_project_role(
    user: RequestUser,
    project_id: str,
    roles: Iterable[Role] = LEADERSHIP_ROLES,
) -> Role:
    if not project_exists(project_id):
        raise ReportNotFound("Project not found")
    role = effective_project_role(user, membership_role(user.id, project_id))
    if role is None or role not in set(roles):
        raise ReportAccessError("Forbidden")
    return role
