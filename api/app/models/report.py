"""Report response models.

Fields are snake_case in Python and serialise as camelCase on the wire.
"""

from __future__ import annotations

from typing import Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectReportEnvelope(ReportModel, Generic[T]):
    ok: bool = True
    data: T


# Cycle time


class CycleTimeSummary(ReportModel):
    median_hours: float
    p75_hours: float
    avg_hours: float
    sample_size: int


class CycleTimeBucket(ReportModel):
    label: str
    count: int


class CycleTimeItem(ReportModel):
    issue_key: str
    title: str
    cycle_hours: float
    completed_at: str


class CycleTimeReport(ReportModel):
    summary: CycleTimeSummary
    buckets: list[CycleTimeBucket]
    items: list[CycleTimeItem]


# Delivery health


class ThroughputPoint(ReportModel):
    period_start: str
    issues_done: int
    points_done: int


class SprintPredictability(ReportModel):
    sprint_id: str
    sprint_name: str
    planned_points: int
    completed_points: int
    completion_ratio: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class SprintPredictabilityBlock(ReportModel):
    type: Literal["sprint"] = "sprint"
    sprints: list[SprintPredictability]


class VolatilityPredictability(ReportModel):
    type: Literal["volatility"] = "volatility"
    stability_score: int = 0
    volatility: float = 0.0


class DeliveryHealthReport(ReportModel):
    completed_issues: int = 0
    completed_points: int = 0
    avg_lead_time_days: Optional[float] = None
    median_lead_time_days: Optional[float] = None
    throughput_trend: list[ThroughputPoint] = Field(default_factory=list)
    predictability: Union[SprintPredictabilityBlock, VolatilityPredictability] = Field(
        default_factory=VolatilityPredictability
    )


# Blockers


class ThemeCount(ReportModel):
    theme: str
    count: int
    examples: list[str] = Field(default_factory=list)


class BlockerThemesReport(ReportModel):
    themes: list[ThemeCount]


class PhraseCount(ReportModel):
    text: str
    count: int


class ProjectBlockerCount(ReportModel):
    project_id: str
    project_name: str
    count: int


class BlockerAggregationReport(ReportModel):
    themes: list[ThemeCount]
    top_blockers: list[PhraseCount]
    projects_with_most_blockers: list[ProjectBlockerCount]


# Adoption and roles


class UserUpdateSummary(ReportModel):
    user_id: str
    name: str
    email: Optional[str] = None
    update_count: int
    last_update: Optional[str] = None


class UserAdoptionReport(ReportModel):
    active_users: int
    total_users: int
    active_user_rate: float
    standup_coverage: float
    avg_updates_per_user: float
    late_update_rate: float
    top_contributors: list[UserUpdateSummary]
    users: list[UserUpdateSummary]


class RoleShare(ReportModel):
    role: str
    count: int
    percentage: float


class RoleDistributionReport(ReportModel):
    total_members: int
    project_count: int
    roles: list[RoleShare]


# Orphaned work


class OrphanedWorkCounts(ReportModel):
    unassigned: int
    missing_epic: int
    unsprinted_active: int
    unlinked_standups: int


class OrphanedIssueSample(ReportModel):
    id: str
    key: Optional[str] = None
    title: str
    status: str
    type: str
    project_id: str
    project_name: str
    updated_at: str


class OrphanedStandupSample(ReportModel):
    id: str
    date: str
    project_id: str
    project_name: str
    user_name: str
    summary: Optional[str] = None


class OrphanedWorkSamples(ReportModel):
    unassigned: list[OrphanedIssueSample]
    missing_epic: list[OrphanedIssueSample]
    unsprinted_active: list[OrphanedIssueSample]
    unlinked_standups: list[OrphanedStandupSample]


class OrphanedWorkReport(ReportModel):
    counts: OrphanedWorkCounts
    samples: OrphanedWorkSamples


# Sprints


class VelocityTrendSprint(ReportModel):
    id: str
    name: str
    end_date: str
    committed_points: int
    completed_points: int
    spillover_points: int


class VelocityTrendReport(ReportModel):
    sprints: list[VelocityTrendSprint] = Field(default_factory=list)


class BurndownSprint(ReportModel):
    id: str
    name: str
    start_date: str
    end_date: str


class SprintBurndownPoint(ReportModel):
    date: str
    remaining_points: int
    completed_points: int


class SprintBurndownReport(ReportModel):
    sprint: BurndownSprint
    points_total: int
    series: list[SprintBurndownPoint]


# Standups


class DailyStandupInsight(ReportModel):
    date: str
    updates_count: int = 0
    blockers_count: int = 0
    dependencies_count: int = 0
    summary: Optional[str] = None


class MissingUpdates(ReportModel):
    user_id: str
    name: str
    missing_days: int


class StandupInsightsReport(ReportModel):
    daily: list[DailyStandupInsight]
    top_blockers: list[PhraseCount]
    top_dependencies: list[PhraseCount]
    missing_updates: list[MissingUpdates]


# Portfolio


class AgingIssue(ReportModel):
    key: str
    title: str
    status: str
    assignee: Optional[str] = None
    age_days: int
    project: str
    days_since_update: int


class AgingIssuesReport(ReportModel):
    stale_count: int
    stale_issues: list[AgingIssue]


class InactiveProject(ReportModel):
    project_id: str
    project_name: str
    last_activity_at: Optional[str] = None
    last_activity_type: Optional[Literal["issue_created", "issue_updated", "standup"]] = None


class InactiveProjectsReport(ReportModel):
    inactive_projects: list[InactiveProject]
    inactive_days: int


class StatusCounts(BaseModel):
    # keys are IssueStatus values, left as-is on the wire
    TODO: int = 0
    IN_PROGRESS: int = 0
    IN_REVIEW: int = 0
    DONE: int = 0


class ProjectStatusCounts(ReportModel):
    project_id: str
    project_name: str
    counts_by_status: StatusCounts


class CrossProjectStatusReport(ReportModel):
    totals_by_status: StatusCounts
    projects: list[ProjectStatusCounts]


# Project-scoped reports


class BurndownPoint(ReportModel):
    date: str
    remaining_points: int
    remaining_issues: int


class VelocityPoint(ReportModel):
    sprint_id: str
    sprint_name: str
    completed_points: int
    completed_issues: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CycleTimePoint(ReportModel):
    issue_id: str
    key: str
    title: str
    started_at: Optional[str] = None
    done_at: Optional[str] = None
    cycle_time_days: Optional[int] = None


class CycleTimePercentiles(ReportModel):
    median: Optional[float] = None
    p75: Optional[float] = None
    p90: Optional[float] = None


class ProjectCycleTimeReport(ReportModel):
    points: list[CycleTimePoint]
    summary: CycleTimePercentiles


class ProjectStandupDay(ReportModel):
    date: str
    entry_ids: list[str] = Field(default_factory=list)
    blockers_count: int = 0
    dependencies_count: int = 0
    updates_count: int = 0
    top_blockers: list[str] = Field(default_factory=list)
    has_ai_summary: bool = False
    summary: Optional[str] = None
    summary_excerpt: Optional[str] = None


SignalType = Literal["MISSING_STANDUP", "PERSISTENT_BLOCKER", "STALE_WORK", "LOW_CONFIDENCE"]
Severity = Literal["low", "medium", "high"]


class StandupSignal(BaseModel):
    """Nudge signal. Field names stay snake_case on the wire."""

    id: str
    signal_type: SignalType
    owner_user_id: str
    owner_name: str
    severity: Severity
    since: str
    evidence_entry_ids: list[str] = Field(default_factory=list)
    linked_work_ids: list[str] = Field(default_factory=list)


class SignalDefinition(BaseModel):
    timezone: str = "UTC"
    cutoff_hour_utc: int = 17
    grace_minutes: int = 60
    threshold: str
    description: str


class ProjectStandupInsightsReport(ReportModel):
    daily: list[ProjectStandupDay]
    signals: list[StandupSignal]
    signal_definitions: dict[str, SignalDefinition]
