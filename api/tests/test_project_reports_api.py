"""Project-scoped reports (/api/projects/{id}/reports/*) and their envelopes."""

from __future__ import annotations

from datetime import datetime

import pytest
from httpx import AsyncClient

from app.adapters.board_store import ReportCapabilities
from app.models.board import IssueStatus, Role, SprintStatus

EARLY_JANUARY = {"from": "2024-01-01", "to": "2024-01-03"}


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
def project(seed):
    seed.user("Ada Admin", Role.ADMIN, id="admin")
    seed.user("Pat Owner", Role.DEV, id="po")
    seed.user("Dev", Role.DEV, id="dev")
    seed.project("Payments", "PAY", id="p1")
    seed.project("Search", "SRC", id="p2")
    # project role, not the workspace role, grants access
    seed.member("p1", "po", Role.PO)
    seed.member("p1", "dev", Role.DEV)
    return seed


@pytest.mark.asyncio
async def test_envelope_errors(client: AsyncClient, project):
    anonymous = await client.get("/api/projects/p1/reports/burndown", params=EARLY_JANUARY)
    assert anonymous.status_code == 401
    assert anonymous.json() == {"ok": False, "message": "Unauthorized"}

    missing = await client.get("/api/projects/nope/reports/velocity", headers=_as("po"))
    assert missing.status_code == 404
    assert missing.json() == {"ok": False, "message": "Project not found"}

    developer = await client.get("/api/projects/p1/reports/cycle-time", headers=_as("dev"))
    assert developer.status_code == 403
    assert developer.json() == {"ok": False, "message": "Forbidden"}

    garbled = await client.get(
        "/api/projects/p1/reports/blocker-themes", params={"from": "2024-13-01"}, headers=_as("po")
    )
    assert garbled.status_code == 400
    assert garbled.json() == {"ok": False, "message": "from and to must be ISO date strings"}

    inverted = await client.get(
        "/api/projects/p1/reports/blocker-themes",
        params={"from": "2024-01-10", "to": "2024-01-01"},
        headers=_as("po"),
    )
    assert inverted.status_code == 400
    assert inverted.json() == {"ok": False, "message": "to date must be on or after from date"}


@pytest.mark.asyncio
async def test_workspace_admin_needs_no_membership(client: AsyncClient, project):
    response = await client.get("/api/projects/p2/reports/velocity", headers=_as("admin"))
    assert response.status_code == 200
    assert response.json() == {"ok": True, "data": []}


@pytest.mark.asyncio
async def test_burndown(client: AsyncClient, project):
    sprint = project.sprint("p1", "Sprint 1", SprintStatus.ACTIVE, datetime(2024, 1, 1), datetime(2024, 1, 2))
    done = project.issue("p1", story_points=5, sprint_id=sprint, created_at=datetime(2024, 1, 1))
    project.status_change(done, IssueStatus.DONE, datetime(2024, 1, 2, 10))
    project.issue("p1", story_points=3, created_at=datetime(2024, 1, 2))

    response = await client.get("/api/projects/p1/reports/burndown", params=EARLY_JANUARY, headers=_as("po"))

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "data": [
            {"date": "2024-01-01", "remainingPoints": 5, "remainingIssues": 1},
            {"date": "2024-01-02", "remainingPoints": 3, "remainingIssues": 1},
            {"date": "2024-01-03", "remainingPoints": 3, "remainingIssues": 1},
        ],
    }

    # the sprint's own dates replace the requested window
    in_sprint = await client.get(
        "/api/projects/p1/reports/burndown",
        params={"from": "2024-01-10", "to": "2024-01-20", "sprintId": sprint},
        headers=_as("po"),
    )
    assert in_sprint.json()["data"] == [
        {"date": "2024-01-01", "remainingPoints": 5, "remainingIssues": 1},
        {"date": "2024-01-02", "remainingPoints": 0, "remainingIssues": 0},
    ]


@pytest.mark.asyncio
async def test_burndown_rejects_foreign_sprint(client: AsyncClient, project):
    other = project.sprint("p2", "Elsewhere", start=datetime(2024, 1, 1), end=datetime(2024, 1, 5))
    response = await client.get(
        "/api/projects/p1/reports/burndown", params={"sprintId": other}, headers=_as("po")
    )
    assert response.status_code == 404
    assert response.json() == {"ok": False, "message": "Sprint not found"}


@pytest.mark.asyncio
async def test_velocity(client: AsyncClient, project):
    sprint = project.sprint("p1", "Sprint 1", SprintStatus.COMPLETED, datetime(2024, 1, 1), datetime(2024, 1, 14))
    done = project.issue("p1", story_points=5, sprint_id=sprint, created_at=datetime(2024, 1, 1))
    project.status_change(done, IssueStatus.DONE, datetime(2024, 1, 2))
    project.issue("p1", story_points=8, sprint_id=sprint, created_at=datetime(2024, 1, 1))

    response = await client.get(
        "/api/projects/p1/reports/velocity", params={"from": "2024-01-01", "to": "2024-01-31"}, headers=_as("po")
    )

    assert response.json()["data"] == [
        {
            "sprintId": sprint,
            "sprintName": "Sprint 1",
            "completedPoints": 5,
            "completedIssues": 1,
            "startDate": "2024-01-01",
            "endDate": "2024-01-14",
        }
    ]


@pytest.mark.asyncio
async def test_cycle_time(client: AsyncClient, project):
    quick = project.issue("p1", "Quick", key="PAY-1", created_at=datetime(2023, 12, 20))
    project.status_change(quick, IssueStatus.IN_PROGRESS, datetime(2024, 1, 1, 10))
    project.status_change(quick, IssueStatus.DONE, datetime(2024, 1, 3, 10))
    reviewed = project.issue("p1", "Reviewed", created_at=datetime(2023, 12, 20))
    project.status_change(reviewed, IssueStatus.IN_REVIEW, datetime(2024, 1, 1))
    project.status_change(reviewed, IssueStatus.DONE, datetime(2024, 1, 5))

    response = await client.get(
        "/api/projects/p1/reports/cycle-time", params={"from": "2024-01-01", "to": "2024-01-31"}, headers=_as("po")
    )

    data = response.json()["data"]
    assert sorted(point["cycleTimeDays"] for point in data["points"]) == [2, 4]
    assert {point["key"] for point in data["points"]} == {"PAY-1", reviewed}
    assert data["summary"] == pytest.approx({"median": 3.0, "p75": 3.5, "p90": 3.8})


@pytest.mark.asyncio
async def test_blocker_themes(client: AsyncClient, project):
    quiet = await client.get("/api/projects/p1/reports/blocker-themes", params=EARLY_JANUARY, headers=_as("po"))
    assert quiet.json()["data"] == [{"theme": "No blockers reported", "count": 0, "examples": []}]

    project.standup("p1", "dev", datetime(2024, 1, 2), blockers="Waiting on staging deploy")
    themed = await client.get("/api/projects/p1/reports/blocker-themes", params=EARLY_JANUARY, headers=_as("po"))
    assert themed.json()["data"] == [
        {"theme": "Dependencies & Waiting", "count": 1, "examples": ["Waiting on staging deploy"]},
        {"theme": "Environment & Deploys", "count": 1, "examples": ["Waiting on staging deploy"]},
    ]


@pytest.mark.asyncio
async def test_sprint_health(client: AsyncClient, project):
    params = {"from": "2024-01-18", "to": "2024-01-31"}

    response = await client.get("/api/projects/p1/reports/sprint-health", params=params, headers=_as("po"))

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    data = body["data"]
    # two members, nobody posted a standup
    assert data["healthScore"] == 70
    assert data["riskDrivers"][0]["type"] == "MISSING_STANDUP"
    assert len(data["trend14d"]) == 14
    assert data["trend14d"][-1]["date"] == "2024-01-31"
    assert data["scoringModelVersion"] == "3.1.1"


@pytest.mark.asyncio
async def test_sprint_health_reads_quality_when_available(client: AsyncClient, project, monkeypatch):
    from app.main import app

    project.quality("p1", datetime(2024, 1, 31), 40)
    params = {"from": "2024-01-18", "to": "2024-01-31"}

    without = await client.get("/api/projects/p1/reports/sprint-health", params=params, headers=_as("po"))
    assert without.json()["data"]["qualityScore"] is None

    monkeypatch.setattr(app.state, "capabilities", ReportCapabilities(standup_quality=True), raising=False)
    response = await client.get("/api/projects/p1/reports/sprint-health", params=params, headers=_as("po"))

    data = response.json()["data"]
    assert data["qualityScore"] == 40.0
    assert data["healthScore"] == 60
    assert "LOW_QUALITY_INPUT" in {driver["type"] for driver in data["riskDrivers"]}


@pytest.fixture
def standups(project):
    blocked = project.issue(
        "p1",
        "Vendor integration",
        status=IssueStatus.IN_PROGRESS,
        assignee_id="dev",
        created_at=datetime(2023, 12, 1),
        updated_at=datetime(2023, 12, 20),
    )
    first = project.standup(
        "p1",
        "dev",
        datetime(2024, 1, 1),
        summary_today="Integrating the payment provider sandbox",
        progress_since_yesterday="Wrote the webhook handler skeleton",
        blockers="Waiting on vendor API keys. Minor",
    )
    second = project.standup(
        "p1",
        "dev",
        datetime(2024, 1, 2),
        summary_today="Integrating the payment provider sandbox",
        blockers="Waiting on vendor API keys",
    )
    project.issue_link(first, blocked)
    project.issue_link(second, blocked)
    vague = [project.standup("p1", "po", datetime(2024, 1, day), summary_today="same as usual") for day in (5, 6)]
    project.summary("p1", datetime(2024, 1, 1), "Release   prep\n" + "a" * 200)
    return {"issue": blocked, "first": first, "second": second, "vague": vague}


@pytest.mark.asyncio
async def test_standup_insights_daily_rows(client: AsyncClient, project, standups):
    params = {"from": "2024-01-01", "to": "2024-01-06"}

    response = await client.get("/api/projects/p1/reports/standup-insights", params=params, headers=_as("po"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert [day["date"] for day in data["daily"]] == [f"2024-01-0{day}" for day in range(1, 7)]
    first_day = data["daily"][0]
    assert first_day["entryIds"] == [standups["first"]]
    assert first_day["blockersCount"] == 1
    assert first_day["dependenciesCount"] == 0
    assert first_day["updatesCount"] == 1
    assert first_day["topBlockers"] == ["Waiting on vendor API keys", "Minor"]
    assert first_day["hasAiSummary"] is True
    assert len(first_day["summaryExcerpt"]) == 160
    assert first_day["summaryExcerpt"].startswith("Release prep aaa")
    assert first_day["summaryExcerpt"].endswith("...")
    quiet_day = data["daily"][2]
    assert quiet_day["updatesCount"] == 0
    assert quiet_day["topBlockers"] == []
    assert quiet_day["hasAiSummary"] is False
    assert quiet_day["summaryExcerpt"] is None
    assert set(data["signalDefinitions"]) == {"MISSING_STANDUP", "PERSISTENT_BLOCKER", "STALE_WORK", "LOW_CONFIDENCE"}
    assert data["signalDefinitions"]["STALE_WORK"]["cutoff_hour_utc"] == 17


@pytest.mark.asyncio
async def test_standup_insights_signals(client: AsyncClient, project, standups, monkeypatch):
    from app.main import app

    params = {"from": "2024-01-01", "to": "2024-01-06"}

    response = await client.get("/api/projects/p1/reports/standup-insights", params=params, headers=_as("po"))

    signals = response.json()["data"]["signals"]
    assert [(signal["signal_type"], signal["severity"], signal["since"]) for signal in signals] == [
        ("MISSING_STANDUP", "high", "2024-01-03"),
        ("STALE_WORK", "medium", "2023-12-20"),
        ("PERSISTENT_BLOCKER", "medium", "2024-01-01"),
        ("LOW_CONFIDENCE", "low", "2024-01-05"),
    ]
    missing, stale, persistent, low = signals
    assert missing["owner_name"] == "Dev"
    assert missing["evidence_entry_ids"] == [standups["second"]]
    assert stale["linked_work_ids"] == [standups["issue"]]
    assert stale["owner_user_id"] == "dev"
    assert persistent["evidence_entry_ids"] == [standups["first"], standups["second"]]
    assert persistent["linked_work_ids"] == [standups["issue"]]
    assert low["owner_name"] == "Pat Owner"
    assert low["evidence_entry_ids"] == standups["vague"]

    # a poor quality score replaces the owner's low-confidence signal
    project.quality("p1", datetime(2024, 1, 5), 30)
    monkeypatch.setattr(app.state, "capabilities", ReportCapabilities(standup_quality=True), raising=False)
    with_quality = await client.get("/api/projects/p1/reports/standup-insights", params=params, headers=_as("po"))

    last = with_quality.json()["data"]["signals"][-1]
    assert last["id"] == f"low-confidence-quality-{standups['vague'][0]}"
    assert last["severity"] == "medium"


@pytest.mark.asyncio
async def test_standup_insights_requires_project_lead(client: AsyncClient, project):
    response = await client.get("/api/projects/p1/reports/standup-insights", headers=_as("dev"))
    assert response.status_code == 403
    assert response.json() == {"ok": False, "message": "Forbidden"}
