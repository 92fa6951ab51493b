"""Sprint health response models (scoring model plus the 14-day report)."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from app.models.report import ReportModel

HealthStatus = Literal["GREEN", "YELLOW", "RED"]
ConfidenceLevel = Literal["HIGH", "MEDIUM", "LOW"]
RiskDriverType = Literal[
    "BLOCKER_CLUSTER",
    "MISSING_STANDUP",
    "STALE_WORK",
    "LOW_QUALITY_INPUT",
    "UNRESOLVED_ACTIONS",
    "END_OF_SPRINT_PRESSURE",
    "OVERLAP_DEDUP_CREDIT",
    "DELIVERY_RISK",
]
CapacitySignalType = Literal["OVERLOADED", "MULTI_BLOCKED", "IDLE"]
TrendIndicator = Literal["IMPROVED", "DEGRADED", "UNCHANGED"]


class RiskDriver(ReportModel):
    type: RiskDriverType
    impact: int
    evidence: list[str] = Field(default_factory=list)


class ScoreBreakdownItem(ReportModel):
    reason: str
    impact: int
    evidence: list[str] = Field(default_factory=list)


class ConfidenceBasis(ReportModel):
    data_completeness: float
    signal_stability: float
    sample_size: int


class HealthProbabilities(ReportModel):
    sprint_success: int
    spillover: int


class ProbabilityModel(ReportModel):
    name: str = "linear-health-score-v1"
    formula: str = (
        "successProbability = clamp(healthScore / 100, 0, 1); "
        "spilloverProbability = 1 - successProbability"
    )


class NormalizedMetrics(ReportModel):
    blocker_rate_per_member: float
    missing_standup_rate: float
    stale_work_rate_per_active_task: float
    unresolved_actions_rate_per_member: float


class SprintHealthComputation(ReportModel):
    health_score: int
    status: HealthStatus
    confidence_level: ConfidenceLevel
    confidence_basis: ConfidenceBasis
    risk_drivers: list[RiskDriver]
    score_breakdown: list[ScoreBreakdownItem]
    probabilities: HealthProbabilities
    probability_model: ProbabilityModel = Field(default_factory=ProbabilityModel)
    normalized_metrics: NormalizedMetrics
    scoring_model_version: str


class SprintRef(ReportModel):
    id: Optional[str] = None
    name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CapacityThresholds(ReportModel):
    open_items: int
    blocked_items: int
    idle_days: int


class ConfidenceWeights(ReportModel):
    data_quality: float
    velocity_stability: float
    blocker_volatility: float
    linked_coverage: float


class ConfidenceThresholds(ReportModel):
    high: float
    medium: float
    minimum_sample_days: int


class ProjectionDefinitions(ReportModel):
    model_version: str
    completion_definition: str
    remaining_work_definition: str
    weighting_model: str
    warning: str
    confidence_weights: ConfidenceWeights
    confidence_thresholds: ConfidenceThresholds
    capacity_thresholds: CapacityThresholds


class VelocitySnapshot(ReportModel):
    avg_tasks_completed_per_day: float
    avg_blocker_resolution_hours: Optional[float] = None
    avg_action_resolution_hours: Optional[float] = None
    completion_rate_per_day: float
    remaining_linked_work: int
    weighted_remaining_work: float
    projected_completion_date: Optional[str] = None
    projected_completion_date_smoothed: Optional[str] = None
    projected_date_delta_days: Optional[int] = None
    delivery_risk: bool
    linked_work_coverage: float
    sample_size_days: int
    scope_added_work_count: int
    scope_removed_work_count: int
    scope_change_summary: str
    sprint: SprintRef
    projection_definitions: ProjectionDefinitions
    projection_model_version: str
    unweighted_projection_warning: bool = True


class CapacityEvidence(ReportModel):
    entry_ids: list[str]
    linked_work_ids: list[str]


class CapacitySignal(ReportModel):
    user_id: str
    name: str
    type: CapacitySignalType
    open_items: int
    blocked_items: int
    idle_days: int
    thresholds: CapacityThresholds
    evidence: CapacityEvidence
    message: str


class DailySprintHealth(SprintHealthComputation):
    date: str
    stale_work_count: int
    missing_standup_members: int
    persistent_blockers_over_2_days: int
    unresolved_actions: int
    quality_score: Optional[float] = None
    concentration_index: float
    velocity_snapshot: VelocitySnapshot
    capacity_signals: list[CapacitySignal]
    forecast_confidence: ConfidenceLevel


class HealthTrendPoint(ReportModel):
    date: str
    health_score: float
    status: HealthStatus


class SprintHealthReport(DailySprintHealth):
    smoothed_health_score: float
    risk_concentration_areas: list[str]
    trend_14d: list[HealthTrendPoint] = Field(alias="trend14d")
    risk_delta_since_yesterday: int
    trend_indicator: TrendIndicator
