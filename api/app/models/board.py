"""Board domain enums shared by the store adapter and report services."""

from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    PO = "PO"
    DEV = "DEV"
    QA = "QA"
    VIEWER = "VIEWER"


class IssueStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"


class IssueType(str, Enum):
    STORY = "STORY"
    BUG = "BUG"
    TASK = "TASK"


class IssuePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SprintStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class IssueHistoryField(str, Enum):
    STATUS = "STATUS"
    SPRINT = "SPRINT"
    ASSIGNEE = "ASSIGNEE"
    PRIORITY = "PRIORITY"
    STORY_POINTS = "STORY_POINTS"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class ActionState(str, Enum):
    OPEN = "OPEN"
    SNOOZED = "SNOOZED"
    DONE = "DONE"


LEADERSHIP_ROLES = frozenset({Role.ADMIN, Role.PO})
