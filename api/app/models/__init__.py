"""Pydantic models."""

from app.models.board import IssueStatus, IssueType, Role
from app.models.report import ProjectReportEnvelope, ReportModel
from app.models.sprint_health import SprintHealthReport

__all__ = [
    "IssueStatus",
    "IssueType",
    "ProjectReportEnvelope",
    "ReportModel",
    "Role",
    "SprintHealthReport",
]
