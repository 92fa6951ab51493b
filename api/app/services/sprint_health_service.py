"""Sprint health: deterministic scoring model plus a 14-day trend report.

``compute_sprint_health_score`` is pure. The report loads the project's facts
once (members, standups, open issues, action states, transitions) and then
evaluates each day of the trend in memory. Nothing is persisted.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from app.adapters.board_store import (
    IssueHistoryRecord,
    IssueRecord,
    ReportCapabilities,
    SprintRecord,
    StandupActionStateRecord,
    StandupEntryIssueLinkRecord,
    StandupEntryRecord,
    StandupEntryResearchLinkRecord,
    StandupQualityDailyRecord,
    session_scope,
)
from app.models.board import ActionState, IssueHistoryField, IssueStatus, IssueType, SprintStatus
from app.models.sprint_health import (
    CapacityEvidence,
    CapacitySignal,
    CapacityThresholds,
    ConfidenceBasis,
    ConfidenceThresholds,
    ConfidenceWeights,
    DailySprintHealth,
    HealthProbabilities,
    HealthTrendPoint,
    NormalizedMetrics,
    ProjectionDefinitions,
    RiskDriver,
    ScoreBreakdownItem,
    SprintHealthComputation,
    SprintHealthReport,
    SprintRef,
    VelocitySnapshot,
)
from app.services.report_dates import DateRange, end_of_day, iso_day, iso_z, iter_days, start_of_day
from app.services.report_facts import MemberFact, project_memberships
from app.services.report_math import SECONDS_PER_DAY, clamp, hours_between, round2, round_int

logger = logging.getLogger(__name__)

SCORING_MODEL_VERSION = "3.1.1"
PROJECTION_MODEL_VERSION = "3.2.1"
TREND_DAYS = 14
SMOOTHING_WINDOW = 3


@dataclass(frozen=True)
class HealthModel:
    base_score: int = 100
    blocker_unit_penalty: int = 15
    missing_standup_unit_penalty: int = 10
    stale_work_max_penalty: int = 20
    stale_work_unit_penalty: int = 3
    quality_threshold: int = 60
    quality_penalty: int = 10
    unresolved_actions_threshold: int = 5
    unresolved_actions_penalty: int = 10
    end_sprint_days_threshold: int = 3
    end_sprint_unresolved_threshold: int = 3
    end_sprint_penalty: int = 8
    overlap_dedup_cap: int = 8
    delivery_risk_penalty: int = 10


HEALTH_MODEL = HealthModel()

CONFIDENCE_WEIGHTS = ConfidenceWeights(
    data_quality=0.4,
    velocity_stability=0.3,
    blocker_volatility=0.15,
    linked_coverage=0.15,
)
CONFIDENCE_THRESHOLDS = ConfidenceThresholds(high=0.75, medium=0.55, minimum_sample_days=5)
CAPACITY_THRESHOLDS = CapacityThresholds(open_items=5, blocked_items=2, idle_days=5)

STALE_HOURS = 72
VELOCITY_WINDOW_DAYS = 7
CAPACITY_WINDOW_DAYS = 14
BLOCKER_WINDOW_DAYS = 30
PERSISTENT_BLOCKER_MIN_DAYS = 3
MIN_SNIPPET_LENGTH = 6

_SNIPPET_SPLIT = re.compile(r"[.\n,;]+")
_UNRESOLVED_STATES = {ActionState.OPEN.value, ActionState.SNOOZED.value}

RISK_AREAS = {
    "BLOCKER_CLUSTER": "Blockers",
    "MISSING_STANDUP": "Standup participation",
    "STALE_WORK": "Execution flow",
    "LOW_QUALITY_INPUT": "Input quality",
    "UNRESOLVED_ACTIONS": "Follow-through",
    "END_OF_SPRINT_PRESSURE": "Sprint timing pressure",
    "DELIVERY_RISK": "Sprint timing pressure",
}


@dataclass(frozen=True)
class SprintHealthInput:
    persistent_blockers_over_2_days: int
    missing_standup_members: int
    stale_work_count: int
    unresolved_actions: int
    quality_score: float | None
    team_size: int
    active_task_count: int
    days_remaining_in_sprint: int | None


def _num(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def _normalized_scale(numerator: float, denominator: float) -> float:
    return clamp(numerator / max(1, denominator), 0.0, 1.5)


def health_status(score: float) -> str:
    if score >= 80:
        return "GREEN"
    if score >= 60:
        return "YELLOW"
    return "RED"


def _confidence_level(basis: ConfidenceBasis) -> str:
    weighted = (
        basis.data_completeness * 0.45
        + basis.signal_stability * 0.35
        + clamp(basis.sample_size / 8) * 0.2
    )
    if weighted >= 0.75:
        return "HIGH"
    if weighted >= 0.5:
        return "MEDIUM"
    return "LOW"


def compute_sprint_health_score(data: SprintHealthInput) -> SprintHealthComputation:
    """Score a sprint day from 100 down, one team-normalised penalty per signal."""
    model = HEALTH_MODEL
    breakdown: list[ScoreBreakdownItem] = []
    drivers: list[RiskDriver] = []

    def penalize(driver_type: str, reason: str, impact: int, evidence: list[str]) -> None:
        breakdown.append(ScoreBreakdownItem(reason=reason, impact=impact, evidence=evidence))
        drivers.append(RiskDriver(type=driver_type, impact=impact, evidence=list(evidence)))

    blocker_rate = _normalized_scale(data.persistent_blockers_over_2_days, data.team_size)
    missing_rate = _normalized_scale(data.missing_standup_members, data.team_size)
    stale_rate = _normalized_scale(data.stale_work_count, data.active_task_count)
    actions_rate = _normalized_scale(data.unresolved_actions, data.team_size)

    blocker_penalty = round_int(data.persistent_blockers_over_2_days * model.blocker_unit_penalty * (0.6 + blocker_rate))
    if blocker_penalty > 0:
        penalize(
            "BLOCKER_CLUSTER",
            "Persistent blockers > 2 days (team-normalized)",
            -blocker_penalty,
            [f"clusters:{data.persistent_blockers_over_2_days}", f"rate:{_num(round2(blocker_rate))}"],
        )

    missing_penalty = round_int(data.missing_standup_members * model.missing_standup_unit_penalty * (0.5 + missing_rate))
    if missing_penalty > 0:
        penalize(
            "MISSING_STANDUP",
            "Missing standup members (team-normalized)",
            -missing_penalty,
            [f"members:{data.missing_standup_members}", f"rate:{_num(round2(missing_rate))}"],
        )

    stale_penalty = min(
        model.stale_work_max_penalty,
        round_int(data.stale_work_count * model.stale_work_unit_penalty * (0.7 + stale_rate)),
    )
    if stale_penalty > 0:
        penalize(
            "STALE_WORK",
            "Stale linked work (scope-normalized)",
            -stale_penalty,
            [f"issues:{data.stale_work_count}", f"rate:{_num(round2(stale_rate))}"],
        )

    if data.quality_score is not None and data.quality_score < model.quality_threshold:
        penalize(
            "LOW_QUALITY_INPUT",
            f"Quality score below {model.quality_threshold}",
            -model.quality_penalty,
            [f"quality:{_num(data.quality_score)}"],
        )

    if data.unresolved_actions > model.unresolved_actions_threshold:
        actions_penalty = round_int(model.unresolved_actions_penalty * (0.5 + actions_rate))
        penalize(
            "UNRESOLVED_ACTIONS",
            f"Unresolved actions above {model.unresolved_actions_threshold} (team-normalized)",
            -actions_penalty,
            [f"actions:{data.unresolved_actions}", f"rate:{_num(round2(actions_rate))}"],
        )

    if (
        data.days_remaining_in_sprint is not None
        and data.days_remaining_in_sprint <= model.end_sprint_days_threshold
        and data.unresolved_actions >= model.end_sprint_unresolved_threshold
    ):
        penalize(
            "END_OF_SPRINT_PRESSURE",
            "End-of-sprint pressure",
            -model.end_sprint_penalty,
            [f"daysRemaining:{data.days_remaining_in_sprint}", f"unresolvedActions:{data.unresolved_actions}"],
        )

    if blocker_penalty > 0 and stale_penalty > 0 and data.unresolved_actions > 0:
        credit = min(model.overlap_dedup_cap, max(2, round_int((stale_penalty + blocker_penalty) * 0.12)))
        penalize("OVERLAP_DEDUP_CREDIT", "Cross-signal overlap de-duplication", credit, ["overlap:blockers+stale+actions"])

    health_score = int(clamp(model.base_score + sum(item.impact for item in breakdown), 0, 100))
    success = clamp(health_score / 100)

    negatives = [abs(item.impact) for item in breakdown if item.impact < 0]
    concentration = clamp(max(negatives, default=0) / max(1, sum(negatives)))
    basis = ConfidenceBasis(
        data_completeness=round2(clamp(1 - missing_rate * 0.8)),
        signal_stability=round2(clamp(1 - concentration * 0.5)),
        sample_size=data.team_size,
    )

    return SprintHealthComputation(
        health_score=health_score,
        status=health_status(health_score),
        confidence_level=_confidence_level(basis),
        confidence_basis=basis,
        risk_drivers=drivers,
        score_breakdown=[
            ScoreBreakdownItem(reason="Base score", impact=model.base_score, evidence=["deterministic"]),
            *breakdown,
        ],
        probabilities=HealthProbabilities(
            sprint_success=round_int(success * 100),
            spillover=round_int((1 - success) * 100),
        ),
        normalized_metrics=NormalizedMetrics(
            blocker_rate_per_member=round2(blocker_rate),
            missing_standup_rate=round2(missing_rate),
            stale_work_rate_per_active_task=round2(stale_rate),
            unresolved_actions_rate_per_member=round2(actions_rate),
        ),
        scoring_model_version=SCORING_MODEL_VERSION,
    )


# Facts


@dataclass(frozen=True)
class EntryFact:
    id: str
    user_id: str
    date: datetime
    blockers: str | None
    issue_ids: tuple[str, ...] = ()
    research_ids: tuple[str, ...] = ()

    @property
    def has_blockers(self) -> bool:
        return bool(self.blockers and self.blockers.strip())


@dataclass(frozen=True)
class OpenIssueFact:
    id: str
    type: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ActionFact:
    date: datetime
    state: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class SprintFact:
    id: str
    name: str
    start_date: datetime | None
    end_date: datetime | None


@dataclass
class SprintHealthFacts:
    members: list[MemberFact] = field(default_factory=list)
    entries: list[EntryFact] = field(default_factory=list)
    open_issues: list[OpenIssueFact] = field(default_factory=list)
    actions: list[ActionFact] = field(default_factory=list)
    done_transitions: list[datetime] = field(default_factory=list)
    sprint_changes: list[tuple[str | None, str | None, datetime]] = field(default_factory=list)
    quality_by_day: dict[date, float] = field(default_factory=dict)
    active_sprint: SprintFact | None = None


def load_sprint_health_facts(
    project_id: str,
    start: datetime,
    end: datetime,
    *,
    include_quality: bool = False,
) -> SprintHealthFacts:
    """Everything the trend needs for ``[start, end]``, read in one session."""
    with session_scope() as session:
        members = project_memberships(session, [project_id])

        entry_rows = (
            session.query(StandupEntryRecord)
            .filter(
                StandupEntryRecord.project_id == project_id,
                StandupEntryRecord.date >= start,
                StandupEntryRecord.date <= end,
            )
            .order_by(StandupEntryRecord.date.asc())
            .all()
        )
        entry_ids = [row.id for row in entry_rows]
        issue_links: dict[str, list[str]] = {}
        research_links: dict[str, list[str]] = {}
        if entry_ids:
            for entry_id, issue_id in (
                session.query(StandupEntryIssueLinkRecord.standup_entry_id, StandupEntryIssueLinkRecord.issue_id)
                .filter(StandupEntryIssueLinkRecord.standup_entry_id.in_(entry_ids))
                .all()
            ):
                issue_links.setdefault(entry_id, []).append(issue_id)
            for entry_id, item_id in (
                session.query(
                    StandupEntryResearchLinkRecord.standup_entry_id,
                    StandupEntryResearchLinkRecord.research_item_id,
                )
                .filter(StandupEntryResearchLinkRecord.standup_entry_id.in_(entry_ids))
                .all()
            ):
                research_links.setdefault(entry_id, []).append(item_id)
        entries = [
            EntryFact(
                id=row.id,
                user_id=row.user_id,
                date=row.date,
                blockers=row.blockers,
                issue_ids=tuple(issue_links.get(row.id, [])),
                research_ids=tuple(research_links.get(row.id, [])),
            )
            for row in entry_rows
        ]

        open_issues = [
            OpenIssueFact(id=row.id, type=row.type, created_at=row.created_at, updated_at=row.updated_at)
            for row in session.query(IssueRecord)
            .filter(IssueRecord.project_id == project_id, IssueRecord.status != IssueStatus.DONE.value)
            .all()
        ]

        actions = [
            ActionFact(date=row.date, state=row.state, created_at=row.created_at, updated_at=row.updated_at)
            for row in session.query(StandupActionStateRecord)
            .filter(StandupActionStateRecord.project_id == project_id)
            .all()
        ]

        history_query = (
            session.query(IssueHistoryRecord)
            .join(IssueRecord, IssueRecord.id == IssueHistoryRecord.issue_id)
            .filter(
                IssueRecord.project_id == project_id,
                IssueHistoryRecord.created_at >= start,
                IssueHistoryRecord.created_at <= end,
            )
        )
        done_transitions = [
            row.created_at
            for row in history_query.filter(
                IssueHistoryRecord.field == IssueHistoryField.STATUS.value,
                IssueHistoryRecord.new_value == IssueStatus.DONE.value,
            ).all()
        ]
        sprint_changes = [
            (row.old_value, row.new_value, row.created_at)
            for row in history_query.filter(IssueHistoryRecord.field == IssueHistoryField.SPRINT.value).all()
        ]

        quality_by_day: dict[date, float] = {}
        if include_quality:
            for row in (
                session.query(StandupQualityDailyRecord)
                .filter(
                    StandupQualityDailyRecord.project_id == project_id,
                    StandupQualityDailyRecord.date >= start,
                    StandupQualityDailyRecord.date <= end,
                )
                .all()
            ):
                quality_by_day[row.date.date()] = row.quality_score

        sprint_row = (
            session.query(SprintRecord)
            .filter(SprintRecord.project_id == project_id, SprintRecord.status == SprintStatus.ACTIVE.value)
            .order_by(SprintRecord.start_date.desc())
            .first()
        )
        active_sprint = None
        if sprint_row is not None:
            active_sprint = SprintFact(
                id=sprint_row.id,
                name=sprint_row.name,
                start_date=sprint_row.start_date,
                end_date=sprint_row.end_date,
            )

    return SprintHealthFacts(
        members=members,
        entries=entries,
        open_issues=open_issues,
        actions=actions,
        done_transitions=done_transitions,
        sprint_changes=sprint_changes,
        quality_by_day=quality_by_day,
        active_sprint=active_sprint,
    )


# Daily computation


def _whole_days(start: datetime, end: datetime) -> int:
    return max(0, round_int((end - start).total_seconds() / SECONDS_PER_DAY))


def _blocker_snippets(text: str | None) -> list[str]:
    return [
        snippet
        for snippet in (part.strip().lower() for part in _SNIPPET_SPLIT.split(text or ""))
        if len(snippet) >= MIN_SNIPPET_LENGTH
    ]


def _issue_type_weight(issue_type: str) -> float:
    if issue_type == IssueType.BUG.value:
        return 1.1
    if issue_type == IssueType.STORY.value:
        return 1.35
    return 1.0


def _age_weight(created_at: datetime, day_end: datetime) -> float:
    age = _whole_days(created_at, day_end)
    if age >= 21:
        return 1.4
    if age >= 10:
        return 1.2
    if age >= 5:
        return 1.1
    return 1.0


def _stability(values: list[float], center: float) -> float:
    variance = sum((value - center) ** 2 for value in values) / max(1, len(values))
    return round2(clamp(1 - math.sqrt(variance) / max(1, center + 1)))


def _projection_definitions(has_sprint: bool) -> ProjectionDefinitions:
    if has_sprint:
        remaining = (
            "Open linked work includes issue/research items linked via standups since sprint start "
            "for the active sprint scope."
        )
    else:
        remaining = "Open linked work includes issue/research items linked via standups in the last 14 days."
    return ProjectionDefinitions(
        model_version=PROJECTION_MODEL_VERSION,
        completion_definition="Issue completion is counted only by ISSUE_HISTORY status transition to DONE.",
        remaining_work_definition=remaining,
        weighting_model="Weighted by issue type and work-item age buckets; unlinked work is excluded from projection.",
        warning="Projection is linkage-dependent and excludes unlinked backlog work.",
        confidence_weights=CONFIDENCE_WEIGHTS,
        confidence_thresholds=CONFIDENCE_THRESHOLDS,
        capacity_thresholds=CAPACITY_THRESHOLDS,
    )


def _capacity_signals(
    members: list[MemberFact],
    scoped_entries: list[EntryFact],
    blocker_entries: list[EntryFact],
    open_issue_ids: set[str],
    capacity_start: datetime,
    day_end: datetime,
) -> list[CapacitySignal]:
    open_items: dict[str, dict[str, None]] = {}
    last_linked: dict[str, datetime] = {}
    evidence_entries: dict[str, dict[str, None]] = {}
    for entry in scoped_entries:
        if not entry.issue_ids and not entry.research_ids:
            continue
        for issue_id in entry.issue_ids:
            if issue_id in open_issue_ids:
                open_items.setdefault(entry.user_id, {})[f"issue:{issue_id}"] = None
        evidence_entries.setdefault(entry.user_id, {})[entry.id] = None
        previous = last_linked.get(entry.user_id)
        if previous is None or previous < entry.date:
            last_linked[entry.user_id] = entry.date

    blocked_issues: dict[str, dict[str, None]] = {}
    blocked_entries: dict[str, dict[str, None]] = {}
    for entry in blocker_entries:
        issues = blocked_issues.setdefault(entry.user_id, {})
        for issue_id in entry.issue_ids:
            issues[issue_id] = None
        blocked_entries.setdefault(entry.user_id, {})[entry.id] = None

    signals: list[CapacitySignal] = []
    for member in members:
        name = member.name or member.email or member.user_id
        open_count = len(open_items.get(member.user_id, {}))
        blocked_count = len(blocked_issues.get(member.user_id, {}))
        idle_days = _whole_days(last_linked.get(member.user_id, capacity_start), day_end)
        linked_evidence = CapacityEvidence(
            entry_ids=list(evidence_entries.get(member.user_id, {}))[:8],
            linked_work_ids=list(open_items.get(member.user_id, {}))[:12],
        )

        def signal(kind: str, evidence: CapacityEvidence, message: str) -> CapacitySignal:
            return CapacitySignal(
                user_id=member.user_id,
                name=name,
                type=kind,
                open_items=open_count,
                blocked_items=blocked_count,
                idle_days=idle_days,
                thresholds=CAPACITY_THRESHOLDS,
                evidence=evidence,
                message=message,
            )

        if open_count > CAPACITY_THRESHOLDS.open_items:
            signals.append(
                signal(
                    "OVERLOADED",
                    linked_evidence,
                    f"{name} has {open_count} open linked items (> {CAPACITY_THRESHOLDS.open_items}).",
                )
            )
        if blocked_count >= CAPACITY_THRESHOLDS.blocked_items:
            blocked_evidence = CapacityEvidence(
                entry_ids=list(blocked_entries.get(member.user_id, {}))[:8],
                linked_work_ids=[f"issue:{issue_id}" for issue_id in blocked_issues.get(member.user_id, {})][:12],
            )
            signals.append(signal("MULTI_BLOCKED", blocked_evidence, f"{name} is blocked on {blocked_count} linked tasks."))
        if open_count == 0 and idle_days >= CAPACITY_THRESHOLDS.idle_days:
            signals.append(
                signal("IDLE", linked_evidence, f"{name} has had no linked work for {idle_days} days.")
            )
    return signals


def _evaluate_day(facts: SprintHealthFacts, day: date) -> tuple[DailySprintHealth, datetime]:
    day_start = start_of_day(day)
    day_end = end_of_day(day)
    velocity_start = day_start - timedelta(days=VELOCITY_WINDOW_DAYS - 1)
    capacity_start = day_start - timedelta(days=CAPACITY_WINDOW_DAYS - 1)
    blocker_window_start = day_start - timedelta(days=BLOCKER_WINDOW_DAYS - 1)
    sprint = facts.active_sprint
    members = facts.members

    def entries_between(start: datetime) -> list[EntryFact]:
        return [entry for entry in facts.entries if start <= entry.date <= day_end]

    day_entries = entries_between(day_start)
    recent_entries = entries_between(velocity_start)
    capacity_entries = entries_between(capacity_start)
    blocker_window_entries = [
        entry for entry in entries_between(blocker_window_start) if entry.blockers
    ]

    # Standup participation
    reported_users = {entry.user_id for entry in day_entries}
    missing_members = max(0, len(members) - len(reported_users))

    # Persistent blockers: same owner + snippet on 3+ distinct days in the last week
    chains: dict[str, set[str]] = {}
    for entry in recent_entries:
        if not entry.has_blockers:
            continue
        for snippet in _blocker_snippets(entry.blockers):
            chains.setdefault(f"{entry.user_id}:{snippet}", set()).add(entry.date.date().isoformat())
    blocker_chains = [key for key, days in chains.items() if len(days) >= PERSISTENT_BLOCKER_MIN_DAYS]

    stale_cutoff = day_end - timedelta(hours=STALE_HOURS)
    stale_issues = [issue for issue in facts.open_issues if issue.updated_at < stale_cutoff]
    blocker_issue_ids = {issue_id for entry in recent_entries if entry.has_blockers for issue_id in entry.issue_ids}
    overlap_count = sum(1 for issue in stale_issues if issue.id in blocker_issue_ids)

    unresolved_actions = sum(
        1 for action in facts.actions if action.date <= day_end and action.state in _UNRESOLVED_STATES
    )
    quality_score = facts.quality_by_day.get(day)

    days_remaining = None
    if sprint is not None and sprint.end_date is not None:
        days_remaining = max(0, math.ceil((sprint.end_date - day_start).total_seconds() / SECONDS_PER_DAY))

    computation = compute_sprint_health_score(
        SprintHealthInput(
            persistent_blockers_over_2_days=len(blocker_chains),
            missing_standup_members=missing_members,
            stale_work_count=len(stale_issues),
            unresolved_actions=unresolved_actions,
            quality_score=quality_score,
            team_size=max(1, len(members)),
            active_task_count=max(1, len(facts.open_issues)),
            days_remaining_in_sprint=days_remaining,
        )
    )

    # Velocity over the trailing week
    velocity_days = [velocity_start.date() + timedelta(days=offset) for offset in range(VELOCITY_WINDOW_DAYS)]
    done_by_day: dict[date, int] = {}
    for done_at in facts.done_transitions:
        if velocity_start <= done_at <= day_end:
            done_by_day[done_at.date()] = done_by_day.get(done_at.date(), 0) + 1
    completed_counts = [done_by_day.get(d, 0) for d in velocity_days]
    sample_days = sum(1 for count in completed_counts if count > 0)
    avg_completed = round2(sum(completed_counts) / len(completed_counts))
    velocity_stability = 0.0 if avg_completed <= 0 else _stability(completed_counts, avg_completed)

    # Blocker and action resolution
    spans: dict[str, tuple[datetime, datetime, set[str]]] = {}
    for entry in blocker_window_entries:
        for snippet in _blocker_snippets(entry.blockers):
            key = f"{entry.user_id}:{snippet}"
            first, last, days = spans.get(key, (entry.date, entry.date, set()))
            days.add(entry.date.date().isoformat())
            spans[key] = (min(first, entry.date), max(last, entry.date), days)
    blocker_hours = [
        round2(hours_between(first, last))
        for first, last, days in spans.values()
        if len(days) >= 2 and last < day_start
    ]
    action_hours = [
        hours
        for hours in (
            round2(hours_between(action.created_at, action.updated_at))
            for action in facts.actions
            if action.state == ActionState.DONE.value and blocker_window_start <= action.updated_at <= day_end
        )
        if hours >= 0
    ]
    avg_blocker_hours = round2(sum(blocker_hours) / len(blocker_hours)) if blocker_hours else None
    avg_action_hours = round2(sum(action_hours) / len(action_hours)) if action_hours else None

    # Remaining linked work and projection
    scope_start = sprint.start_date if sprint is not None and sprint.start_date is not None else capacity_start
    scoped_entries = [entry for entry in capacity_entries if entry.date >= scope_start]
    open_by_id = {issue.id: issue for issue in facts.open_issues}
    remaining_ids: dict[str, None] = {}
    for entry in scoped_entries:
        for issue_id in entry.issue_ids:
            if issue_id in open_by_id:
                remaining_ids[issue_id] = None
    remaining_work = len(remaining_ids)
    weighted_remaining = round2(
        sum(
            _issue_type_weight(open_by_id[issue_id].type) * _age_weight(open_by_id[issue_id].created_at, day_end)
            for issue_id in remaining_ids
        )
    )
    completion_rate = max(0.1, avg_completed)
    projected = day_start + timedelta(days=math.ceil(weighted_remaining / completion_rate))
    delivery_risk = bool(sprint is not None and sprint.end_date is not None and projected > sprint.end_date)

    capacity_signals = _capacity_signals(
        members,
        scoped_entries,
        [entry for entry in blocker_window_entries if entry.date >= velocity_start and entry.has_blockers],
        set(open_by_id),
        capacity_start,
        day_end,
    )

    # Scope churn over the trailing week
    added = 0
    removed = 0
    for old_value, new_value, changed_at in facts.sprint_changes:
        if not velocity_start <= changed_at <= day_end:
            continue
        old_value = (old_value or "").strip()
        new_value = (new_value or "").strip()
        if not old_value and new_value:
            added += 1
        if old_value and not new_value:
            removed += 1
        if old_value and new_value and old_value != new_value:
            added += 1
            removed += 1

    # Forecast confidence
    blockers_by_day: dict[date, int] = {}
    for entry in blocker_window_entries:
        blockers_by_day[entry.date.date()] = blockers_by_day.get(entry.date.date(), 0) + 1
    blocker_daily = [blockers_by_day.get(d, 0) for d in velocity_days]
    blocker_volatility = _stability(blocker_daily, sum(blocker_daily) / len(blocker_daily))

    linked_entries = sum(1 for entry in capacity_entries if entry.issue_ids or entry.research_ids)
    linked_coverage = round2(linked_entries / max(1, len(capacity_entries)))
    quality_parts = [
        clamp(quality_score / 100) if quality_score is not None else 0.5,
        clamp(len(day_entries) / max(1, len(members))),
        clamp((avg_completed + 1) / (remaining_work + avg_completed + 1)),
        linked_coverage,
    ]
    data_quality = round2(sum(quality_parts) / len(quality_parts))
    churn_ratio = round2((added + removed) / max(1, remaining_work + sum(completed_counts)))
    churn_penalty = min(0.2, churn_ratio * 0.25)
    weighted_confidence = (
        data_quality * CONFIDENCE_WEIGHTS.data_quality
        + velocity_stability * CONFIDENCE_WEIGHTS.velocity_stability
        + blocker_volatility * CONFIDENCE_WEIGHTS.blocker_volatility
        + linked_coverage * CONFIDENCE_WEIGHTS.linked_coverage
    )
    adjusted_confidence = max(0.0, weighted_confidence - churn_penalty)
    forecast = "LOW"
    if sample_days >= CONFIDENCE_THRESHOLDS.minimum_sample_days:
        if adjusted_confidence >= CONFIDENCE_THRESHOLDS.high:
            forecast = "HIGH"
        elif adjusted_confidence >= CONFIDENCE_THRESHOLDS.medium:
            forecast = "MEDIUM"

    # Risk drivers with concrete evidence
    evidence_by_type = {
        "BLOCKER_CLUSTER": blocker_chains[:6],
        "MISSING_STANDUP": [m.user_id for m in members if m.user_id not in reported_users][:6],
        "STALE_WORK": [issue.id for issue in stale_issues][:10],
        "LOW_QUALITY_INPUT": [f"quality:{_num(quality_score)}"] if quality_score is not None else [],
        "UNRESOLVED_ACTIONS": [f"count:{unresolved_actions}"],
        "END_OF_SPRINT_PRESSURE": [f"daysRemaining:{days_remaining}"] if days_remaining is not None else [],
        "OVERLAP_DEDUP_CREDIT": [f"overlapIssueCount:{overlap_count}"],
        "DELIVERY_RISK": [
            f"projectedCompletion:{iso_day(projected)}",
            f"sprintEnd:{iso_day(sprint.end_date) if sprint is not None and sprint.end_date else 'n/a'}",
        ],
    }
    drivers = [
        RiskDriver(type=driver.type, impact=driver.impact, evidence=list(evidence_by_type[driver.type]))
        for driver in computation.risk_drivers
    ]
    if delivery_risk:
        drivers.append(
            RiskDriver(
                type="DELIVERY_RISK",
                impact=-HEALTH_MODEL.delivery_risk_penalty,
                evidence=list(evidence_by_type["DELIVERY_RISK"]),
            )
        )
    negative_impacts = [abs(driver.impact) for driver in drivers if driver.impact < 0]
    concentration_index = round2(max(negative_impacts) / sum(negative_impacts)) if negative_impacts else 0.0

    snapshot = VelocitySnapshot(
        avg_tasks_completed_per_day=avg_completed,
        avg_blocker_resolution_hours=avg_blocker_hours,
        avg_action_resolution_hours=avg_action_hours,
        completion_rate_per_day=completion_rate,
        remaining_linked_work=remaining_work,
        weighted_remaining_work=weighted_remaining,
        projected_completion_date=iso_z(projected),
        delivery_risk=delivery_risk,
        linked_work_coverage=linked_coverage,
        sample_size_days=sample_days,
        scope_added_work_count=added,
        scope_removed_work_count=removed,
        scope_change_summary=f"Scope changed by +{added} / -{removed} items in the last 7 days.",
        sprint=SprintRef(
            id=sprint.id if sprint else None,
            name=sprint.name if sprint else None,
            start_date=iso_z(sprint.start_date) if sprint else None,
            end_date=iso_z(sprint.end_date) if sprint else None,
        ),
        projection_definitions=_projection_definitions(sprint is not None),
        projection_model_version=PROJECTION_MODEL_VERSION,
    )

    daily = DailySprintHealth(
        **computation.model_dump(exclude={"risk_drivers"}),
        risk_drivers=drivers,
        date=day.isoformat(),
        stale_work_count=len(stale_issues),
        missing_standup_members=missing_members,
        persistent_blockers_over_2_days=len(blocker_chains),
        unresolved_actions=unresolved_actions,
        quality_score=quality_score,
        concentration_index=concentration_index,
        velocity_snapshot=snapshot,
        capacity_signals=capacity_signals,
        forecast_confidence=forecast,
    )
    return daily, projected


def compute_daily_sprint_health(facts: SprintHealthFacts, day: date) -> DailySprintHealth:
    return _evaluate_day(facts, day)[0]


def risk_concentration_areas(drivers: list[RiskDriver]) -> list[str]:
    areas: dict[str, None] = {}
    for driver in drivers:
        if driver.impact >= 0:
            continue
        area = RISK_AREAS.get(driver.type)
        if area:
            areas[area] = None
    return list(areas)


def build_sprint_health_report(facts: SprintHealthFacts, end_day: date) -> SprintHealthReport:
    days = list(iter_days(end_day - timedelta(days=TREND_DAYS - 1), end_day))
    evaluated = [_evaluate_day(facts, day) for day in days]
    computed = [daily for daily, _ in evaluated]
    projections = [projected for _, projected in evaluated]

    trend: list[HealthTrendPoint] = []
    for index, daily in enumerate(computed):
        window = computed[max(0, index - SMOOTHING_WINDOW + 1) : index + 1]
        average = round2(sum(item.health_score for item in window) / len(window))
        trend.append(HealthTrendPoint(date=daily.date, health_score=average, status=health_status(average)))

    latest, previous = computed[-1], computed[-2]
    raw_delta = len(latest.risk_drivers) - len(previous.risk_drivers)
    smooth_delta = trend[-1].health_score - trend[-2].health_score
    if smooth_delta > 2:
        indicator = "IMPROVED"
    elif smooth_delta < -2:
        indicator = "DEGRADED"
    else:
        indicator = "UNCHANGED"

    recent = projections[-SMOOTHING_WINDOW:]
    anchor = recent[0]
    smoothed_projection = anchor + sum((value - anchor for value in recent), timedelta()) / len(recent)
    snapshot = latest.velocity_snapshot.model_copy(
        update={
            "projected_completion_date_smoothed": iso_z(smoothed_projection),
            "projected_date_delta_days": _whole_days(projections[-2], projections[-1]),
        }
    )

    return SprintHealthReport(
        **latest.model_dump(exclude={"velocity_snapshot"}),
        velocity_snapshot=snapshot,
        smoothed_health_score=trend[-1].health_score,
        risk_concentration_areas=risk_concentration_areas(latest.risk_drivers),
        trend_14d=trend,
        risk_delta_since_yesterday=0 if abs(raw_delta) <= 2 else raw_delta,
        trend_indicator=indicator,
    )


def sprint_health_report(
    project_id: str,
    window: DateRange,
    capabilities: ReportCapabilities | None = None,
) -> SprintHealthReport:
    end_day = window.end.date()
    first_day = end_day - timedelta(days=TREND_DAYS - 1)
    load_start = start_of_day(first_day) - timedelta(days=BLOCKER_WINDOW_DAYS - 1)
    include_quality = bool(capabilities and capabilities.standup_quality)
    facts = load_sprint_health_facts(project_id, load_start, end_of_day(end_day), include_quality=include_quality)
    report = build_sprint_health_report(facts, end_day)
    logger.debug(
        "sprint_health_report project=%s score=%s status=%s drivers=%s quality=%s",
        project_id,
        report.health_score,
        report.status,
        len(report.risk_drivers),
        include_quality,
    )
    return report
