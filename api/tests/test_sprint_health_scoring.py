"""Deterministic sprint health scoring and the in-memory 14-day trend."""

from datetime import date, datetime

from app.services.report_facts import MemberFact
from app.services.sprint_health_service import (
    SCORING_MODEL_VERSION,
    EntryFact,
    SprintHealthFacts,
    SprintHealthInput,
    build_sprint_health_report,
    compute_sprint_health_score,
    health_status,
    risk_concentration_areas,
)


def _input(**overrides) -> SprintHealthInput:
    values = dict(
        persistent_blockers_over_2_days=0,
        missing_standup_members=0,
        stale_work_count=0,
        unresolved_actions=0,
        quality_score=None,
        team_size=4,
        active_task_count=1,
        days_remaining_in_sprint=None,
    )
    values.update(overrides)
    return SprintHealthInput(**values)


def test_quiet_sprint_scores_full_marks():
    result = compute_sprint_health_score(_input())
    assert result.health_score == 100
    assert result.status == "GREEN"
    assert result.risk_drivers == []
    assert [(item.reason, item.impact) for item in result.score_breakdown] == [("Base score", 100)]
    assert (result.probabilities.sprint_success, result.probabilities.spillover) == (100, 0)
    assert result.confidence_level == "HIGH"
    assert result.scoring_model_version == SCORING_MODEL_VERSION


def test_penalties_are_team_normalised_and_overlap_is_credited():
    result = compute_sprint_health_score(
        _input(
            persistent_blockers_over_2_days=2,
            stale_work_count=3,
            active_task_count=6,
            unresolved_actions=6,
            days_remaining_in_sprint=2,
        )
    )
    impacts = {driver.type: driver.impact for driver in result.risk_drivers}
    assert impacts == {
        "BLOCKER_CLUSTER": -33,
        "STALE_WORK": -11,
        "UNRESOLVED_ACTIONS": -20,
        "END_OF_SPRINT_PRESSURE": -8,
        "OVERLAP_DEDUP_CREDIT": 5,
    }
    assert result.health_score == 33
    assert result.status == "RED"
    assert result.probabilities.spillover == 67
    assert result.risk_drivers[0].evidence == ["clusters:2", "rate:0.5"]
    assert result.normalized_metrics.unresolved_actions_rate_per_member == 1.5


def test_missing_standups_round_half_up_and_quality_penalty():
    result = compute_sprint_health_score(_input(missing_standup_members=1, quality_score=50))
    impacts = {driver.type: driver.impact for driver in result.risk_drivers}
    assert impacts == {"MISSING_STANDUP": -8, "LOW_QUALITY_INPUT": -10}
    assert result.health_score == 82
    assert result.confidence_basis.data_completeness == 0.8


def test_score_never_drops_below_zero():
    result = compute_sprint_health_score(
        _input(persistent_blockers_over_2_days=20, missing_standup_members=20, team_size=1)
    )
    assert result.health_score == 0
    assert result.probabilities.sprint_success == 0


def test_health_status_thresholds():
    assert health_status(80) == "GREEN"
    assert health_status(79.9) == "YELLOW"
    assert health_status(60) == "YELLOW"
    assert health_status(59) == "RED"


def test_risk_areas_only_count_penalties():
    result = compute_sprint_health_score(
        _input(persistent_blockers_over_2_days=1, stale_work_count=1, unresolved_actions=1)
    )
    assert risk_concentration_areas(result.risk_drivers) == ["Blockers", "Execution flow"]


def _members(*ids: str) -> list[MemberFact]:
    return [MemberFact(project_id="p1", user_id=uid, role="DEV", name=uid.title(), email=None) for uid in ids]


def test_trend_report_without_standups_flags_missing_members():
    facts = SprintHealthFacts(members=_members("ana", "ben"))
    report = build_sprint_health_report(facts, date(2024, 3, 14))

    assert report.date == "2024-03-14"
    assert report.health_score == 70
    assert report.missing_standup_members == 2
    assert len(report.trend_14d) == 14
    assert report.trend_14d[0].date == "2024-03-01"
    assert {point.health_score for point in report.trend_14d} == {70}
    assert report.trend_indicator == "UNCHANGED"
    assert report.risk_delta_since_yesterday == 0
    assert report.risk_concentration_areas == ["Standup participation"]
    assert report.velocity_snapshot.delivery_risk is False
    assert report.velocity_snapshot.projected_date_delta_days == 1
    assert {signal.type for signal in report.capacity_signals} == {"IDLE"}

    payload = report.model_dump(mode="json", by_alias=True)
    assert "trend14d" in payload
    assert payload["persistentBlockersOver2Days"] == 0
    assert payload["velocitySnapshot"]["projectionModelVersion"] == "3.2.1"


def test_trend_report_detects_blocker_that_repeats_three_days():
    entries = [
        EntryFact(id=f"e{day}", user_id="ana", date=datetime(2024, 3, day, 9), blockers="Waiting on staging access")
        for day in (12, 13, 14)
    ]
    entries.append(EntryFact(id="b14", user_id="ben", date=datetime(2024, 3, 14, 9), blockers=None))
    facts = SprintHealthFacts(members=_members("ana", "ben"), entries=entries)

    report = build_sprint_health_report(facts, date(2024, 3, 14))

    assert report.persistent_blockers_over_2_days == 1
    assert report.missing_standup_members == 0
    blocker = next(driver for driver in report.risk_drivers if driver.type == "BLOCKER_CLUSTER")
    assert blocker.evidence == ["ana:waiting on staging access"]
    assert report.health_score == 83
    # smoothed: (90 + 90 + 83) / 3 against (70 + 90 + 90) / 3
    assert report.smoothed_health_score == 87.67
    assert report.trend_indicator == "IMPROVED"
