"""Resolve the caller of a report request.

Authentication proper lives in front of this API; the reports only need the
user id it forwards in ``X-User-Id`` and the matching user row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.adapters.board_store import UserRecord, session_scope
from app.models.board import Role

logger = logging.getLogger(__name__)

USER_HEADER = "x-user-id"


@dataclass(frozen=True)
class RequestUser:
    id: str
    role: Role
    name: str


def load_user(user_id: str | None) -> RequestUser | None:
    cleaned = (user_id or "").strip()
    if not cleaned:
        return None
    with session_scope() as session:
        row = session.get(UserRecord, cleaned)
        if row is None:
            logger.info("request_user_unknown user_id=%s", cleaned)
            return None
        try:
            role = Role(row.role)
        except ValueError:
            role = Role.VIEWER
        return RequestUser(id=row.id, role=role, name=row.name)
