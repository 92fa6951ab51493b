"""Standup adoption and membership role distribution."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime

from app.adapters.board_store import UserRecord, session_scope
from app.models.board import Role
from app.models.report import RoleDistributionReport, RoleShare, UserAdoptionReport, UserUpdateSummary
from app.services.report_access_service import ProjectScope
from app.services.report_dates import DateRange, iso_day, weekday_dates
from app.services.report_facts import MemberFact, StandupFact, project_memberships, standup_entries
from app.services.report_math import safe_rate

logger = logging.getLogger(__name__)

TOP_CONTRIBUTOR_LIMIT = 5


def late_update_hour() -> int:
    raw = os.getenv("REPORT_LATE_UPDATE_HOUR", "12").strip()
    try:
        return min(23, max(0, int(raw)))
    except ValueError:
        return 12


def _load_standups(scope: ProjectScope, window: DateRange) -> list[StandupFact]:
    with session_scope() as session:
        return standup_entries(session, scope, window.start, window.end)


def _load_members(scope: ProjectScope) -> list[MemberFact]:
    with session_scope() as session:
        return project_memberships(session, scope)


def _load_standup_users(user_ids: set[str]) -> dict[str, tuple[str, str | None]]:
    if not user_ids:
        return {}
    with session_scope() as session:
        rows = (
            session.query(UserRecord.id, UserRecord.name, UserRecord.email)
            .filter(UserRecord.id.in_(list(user_ids)))
            .all()
        )
    return {user_id: (name, email) for user_id, name, email in rows}


def build_user_adoption(
    standups: list[StandupFact],
    members: list[MemberFact],
    standup_users: dict[str, tuple[str, str | None]],
    window: DateRange,
    late_hour: int,
) -> UserAdoptionReport:
    user_map: dict[str, tuple[str, str | None]] = {}
    for member in members:
        user_map[member.user_id] = (member.name, member.email)
    for entry in standups:
        if entry.user_id not in user_map and entry.user_id in standup_users:
            user_map[entry.user_id] = standup_users[entry.user_id]

    counts: dict[str, int] = {}
    last_update: dict[str, datetime] = {}
    standup_days: set[str] = set()
    late_updates = 0
    for entry in standups:
        counts[entry.user_id] = counts.get(entry.user_id, 0) + 1
        previous = last_update.get(entry.user_id)
        if previous is None or entry.created_at > previous:
            last_update[entry.user_id] = entry.created_at
        if entry.created_at.hour >= late_hour:
            late_updates += 1
        standup_days.add(entry.date.date().isoformat())

    total_users = len(user_map)
    active_users = len(counts)
    total_updates = len(standups)
    weekdays = weekday_dates(window.start, window.end)
    covered = len(weekdays & standup_days)

    users = [
        UserUpdateSummary(
            user_id=user_id,
            name=name,
            email=email,
            update_count=counts.get(user_id, 0),
            last_update=iso_day(last_update.get(user_id)),
        )
        for user_id, (name, email) in user_map.items()
    ]
    users.sort(key=lambda user: (-user.update_count, user.name.lower()))
    top = [user for user in users if user.update_count > 0][:TOP_CONTRIBUTOR_LIMIT]

    return UserAdoptionReport(
        active_users=active_users,
        total_users=total_users,
        active_user_rate=safe_rate(active_users, total_users),
        standup_coverage=safe_rate(covered, len(weekdays)),
        avg_updates_per_user=safe_rate(total_updates, total_users),
        late_update_rate=safe_rate(late_updates, total_updates),
        top_contributors=top,
        users=users,
    )


async def user_adoption_report(scope: ProjectScope, window: DateRange) -> UserAdoptionReport:
    standups, members = await asyncio.gather(
        asyncio.to_thread(_load_standups, scope, window),
        asyncio.to_thread(_load_members, scope),
    )
    member_ids = {member.user_id for member in members}
    standup_users = await asyncio.to_thread(
        _load_standup_users, {entry.user_id for entry in standups} - member_ids
    )
    report = build_user_adoption(standups, members, standup_users, window, late_update_hour())
    logger.debug(
        "user_adoption_report users=%s active=%s updates=%s",
        report.total_users,
        report.active_users,
        len(standups),
    )
    return report


def role_distribution_report(scope: ProjectScope) -> RoleDistributionReport:
    members = _load_members(scope)
    total = len(members)
    roles = []
    for role in Role:
        count = sum(1 for member in members if member.role == role.value)
        roles.append(RoleShare(role=role.value, count=count, percentage=safe_rate(count, total)))
    return RoleDistributionReport(
        total_members=total,
        project_count=len({member.project_id for member in members}),
        roles=roles,
    )
