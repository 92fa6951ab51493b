"""Workspace report endpoints (/api/reports/*)."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from app.models.board import AttendanceStatus, IssueStatus, IssueType, Role, SprintStatus

JANUARY = {"from": "2024-01-01", "to": "2024-01-31"}


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
def workspace(seed):
    seed.user("Ada Admin", Role.ADMIN, email="ada@example.com", id="admin")
    seed.user("Pat Owner", Role.PO, email="pat@example.com", id="po")
    seed.user("Dev", Role.DEV, email="dev@example.com", id="dev")
    seed.user("Olive Outsider", Role.DEV, id="outsider")
    seed.project("Payments", "PAY", id="p1")
    seed.project("Search", "SRC", id="p2")
    seed.member("p1", "dev", Role.DEV)
    seed.member("p1", "po", Role.PO)
    seed.member("p2", "po", Role.PO)
    return seed


# Auth, scoping and error envelopes


@pytest.mark.asyncio
async def test_reports_require_a_known_user(client: AsyncClient, workspace):
    missing = await client.get("/api/reports/cycle-time", params=JANUARY)
    unknown = await client.get("/api/reports/cycle-time", params=JANUARY, headers=_as("ghost"))
    assert missing.status_code == 401
    assert missing.json() == {"message": "Unauthorized"}
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_strict_reports_reject_bad_ranges(client: AsyncClient, workspace):
    for params in ({}, {"from": "2024-01-31", "to": "2024-01-01"}, {"from": "01/01/2024", "to": "2024-01-31"}):
        response = await client.get("/api/reports/blocker-themes", params=params, headers=_as("admin"))
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid date range"}


@pytest.mark.asyncio
async def test_non_member_project_filter_is_forbidden(client: AsyncClient, workspace):
    response = await client.get(
        "/api/reports/cycle-time", params={**JANUARY, "projectId": "p2"}, headers=_as("dev")
    )
    assert response.status_code == 403
    assert response.json() == {"message": "Forbidden"}

    adoption = await client.get("/api/reports/user-adoption", headers=_as("outsider"))
    assert adoption.status_code == 403
    assert adoption.json() == {"message": "No access to requested project"}


@pytest.mark.asyncio
async def test_unhandled_errors_answer_generic_500(client: AsyncClient, workspace, monkeypatch):
    from app.services import cycle_time_service

    def boom(scope, window):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(cycle_time_service, "cycle_time_report", boom)
    response = await client.get("/api/reports/cycle-time", params=JANUARY, headers=_as("admin"))
    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error"}


@pytest.mark.asyncio
async def test_responses_carry_timing_headers(client: AsyncClient, workspace):
    response = await client.get(
        "/api/reports/role-distribution", headers={**_as("admin"), "x-request-id": "req-123"}
    )
    assert response.status_code == 200
    assert float(response.headers["x-bboard-runtime-ms"]) > 0
    assert response.headers["x-bboard-request-id"] == "req-123"


# Cycle time


@pytest.mark.asyncio
async def test_cycle_time_median_and_buckets(client: AsyncClient, workspace):
    started = datetime(2024, 1, 10)
    for index, hours in enumerate((10, 50, 200)):
        issue = workspace.issue(
            "p1", f"Issue {index}", key=f"PAY-{index}", status=IssueStatus.DONE, created_at=started
        )
        workspace.status_change(issue, IssueStatus.IN_PROGRESS, started)
        workspace.status_change(issue, IssueStatus.DONE, started + timedelta(hours=hours))
    # completed before the window
    early = workspace.issue("p1", "Early", status=IssueStatus.DONE, created_at=datetime(2023, 12, 1))
    workspace.status_change(early, IssueStatus.DONE, datetime(2023, 12, 2))

    response = await client.get(
        "/api/reports/cycle-time", params={**JANUARY, "projectId": "p1"}, headers=_as("admin")
    )

    assert response.status_code == 200
    data = response.json()
    assert data["summary"] == {"medianHours": 50.0, "p75Hours": 125.0, "avgHours": 86.7, "sampleSize": 3}
    assert {bucket["label"]: bucket["count"] for bucket in data["buckets"]} == {
        "0-1d": 1,
        "1-3d": 1,
        "3-7d": 0,
        "7-14d": 1,
        "14d+": 0,
    }
    assert [item["cycleHours"] for item in data["items"]] == [200.0, 50.0, 10.0]
    assert data["items"][0]["issueKey"] == "PAY-2"
    assert data["items"][0]["completedAt"] == "2024-01-18T08:00:00.000Z"


# Delivery health


@pytest.mark.asyncio
async def test_delivery_health_with_sprint_predictability(client: AsyncClient, workspace):
    sprint = workspace.sprint("p1", "Sprint 1", SprintStatus.ACTIVE, datetime(2024, 1, 1), datetime(2024, 1, 14, 23, 59))
    done = workspace.issue(
        "p1", "Done", status=IssueStatus.DONE, story_points=5, sprint_id=sprint, created_at=datetime(2024, 1, 1)
    )
    workspace.status_change(done, IssueStatus.DONE, datetime(2024, 1, 5))
    workspace.issue("p1", "Open", story_points=3, sprint_id=sprint, created_at=datetime(2024, 1, 2))

    response = await client.get(
        "/api/reports/delivery-health", params={"from": "2024-01-01", "to": "2024-01-14"}, headers=_as("dev")
    )

    assert response.status_code == 200
    data = response.json()
    assert data["completedIssues"] == 1
    assert data["completedPoints"] == 5
    assert data["avgLeadTimeDays"] == 4.0
    assert data["medianLeadTimeDays"] == 4.0
    assert len(data["throughputTrend"]) == 14
    assert data["throughputTrend"][4] == {"periodStart": "2024-01-05", "issuesDone": 1, "pointsDone": 5}
    predictability = data["predictability"]
    assert predictability["type"] == "sprint"
    assert predictability["sprints"][0]["plannedPoints"] == 8
    assert predictability["sprints"][0]["completedPoints"] == 5
    assert predictability["sprints"][0]["completionRatio"] == 0.63


@pytest.mark.asyncio
async def test_delivery_health_volatility_without_sprints(client: AsyncClient, workspace):
    for day in (2, 3, 10, 24):
        issue = workspace.issue("p1", f"Done {day}", status=IssueStatus.DONE, created_at=datetime(2024, 1, 1))
        workspace.status_change(issue, IssueStatus.DONE, datetime(2024, 1, day))

    response = await client.get("/api/reports/delivery-health", params=JANUARY, headers=_as("admin"))

    data = response.json()
    assert data["predictability"]["type"] == "volatility"
    # weekly counts 2, 1, 0, 1, 0 -> non-zero weeks 2, 1, 1
    assert data["predictability"]["stabilityScore"] == 65
    assert data["throughputTrend"][0]["periodStart"] == "2024-01-01"


@pytest.mark.asyncio
async def test_delivery_health_is_zeroed_for_callers_without_projects(client: AsyncClient, workspace):
    response = await client.get("/api/reports/delivery-health", headers=_as("outsider"))
    assert response.status_code == 200
    assert response.json() == {
        "completedIssues": 0,
        "completedPoints": 0,
        "avgLeadTimeDays": None,
        "medianLeadTimeDays": None,
        "throughputTrend": [],
        "predictability": {"type": "volatility", "stabilityScore": 0, "volatility": 0.0},
    }


@pytest.mark.asyncio
async def test_lenient_reports_fall_back_on_inverted_range(client: AsyncClient, workspace):
    response = await client.get(
        "/api/reports/delivery-health", params={"from": "2024-02-10", "to": "2024-02-01"}, headers=_as("admin")
    )
    assert response.status_code == 200
    assert response.json()["throughputTrend"]


# Blockers


@pytest.mark.asyncio
async def test_blocker_themes(client: AsyncClient, workspace):
    workspace.standup("p1", "dev", datetime(2024, 1, 3, 9), blockers="API timeout on checkout; CSS broken")
    workspace.standup("p1", "dev", datetime(2024, 1, 4, 9), blockers="backend endpoint missing")
    workspace.standup("p2", "po", datetime(2024, 1, 4, 9), blockers="waiting for legal")

    response = await client.get("/api/reports/blocker-themes", params=JANUARY, headers=_as("dev"))

    assert response.status_code == 200
    themes = response.json()["themes"]
    assert themes[0] == {
        "theme": "Backend/API",
        "count": 2,
        "examples": ["API timeout on checkout", "backend endpoint missing"],
    }
    assert themes[1]["theme"] == "Frontend/UI"
    assert all(theme["theme"] != "Other" for theme in themes)


@pytest.mark.asyncio
async def test_blocker_aggregation(client: AsyncClient, workspace):
    workspace.standup(
        "p1", "dev", datetime(2024, 1, 3, 9), blockers="Login token expired", dependencies="db schema migration"
    )
    workspace.standup("p1", "dev", datetime(2024, 1, 4, 9), blockers="login token expired")
    workspace.standup("p2", "po", datetime(2024, 1, 4, 9), blockers="something odd")

    response = await client.get("/api/reports/blocker-aggregation", params=JANUARY, headers=_as("admin"))

    data = response.json()
    assert {theme["theme"]: theme["count"] for theme in data["themes"]} == {"AUTH": 2, "DB": 1, "OTHER": 1}
    assert data["topBlockers"][0] == {"text": "Login token expired", "count": 2}
    assert data["projectsWithMostBlockers"][0] == {"projectId": "p1", "projectName": "Payments", "count": 3}


# Adoption and roles


@pytest.mark.asyncio
async def test_user_adoption(client: AsyncClient, workspace, monkeypatch):
    workspace.standup("p1", "dev", datetime(2024, 1, 1), created_at=datetime(2024, 1, 1, 9))
    workspace.standup("p1", "dev", datetime(2024, 1, 2), created_at=datetime(2024, 1, 2, 13))
    params = {"from": "2024-01-01", "to": "2024-01-07", "projectId": "p1"}

    response = await client.get("/api/reports/user-adoption", params=params, headers=_as("po"))

    data = response.json()
    assert data["totalUsers"] == 2
    assert data["activeUsers"] == 1
    assert data["activeUserRate"] == 0.5
    assert data["standupCoverage"] == 0.4
    assert data["avgUpdatesPerUser"] == 1.0
    assert data["lateUpdateRate"] == 0.5
    assert [user["userId"] for user in data["topContributors"]] == ["dev"]
    assert data["users"][0]["lastUpdate"] == "2024-01-02"

    monkeypatch.setenv("REPORT_LATE_UPDATE_HOUR", "14")
    later = await client.get("/api/reports/user-adoption", params=params, headers=_as("po"))
    assert later.json()["lateUpdateRate"] == 0.0


@pytest.mark.asyncio
async def test_role_distribution_shares_sum_to_one(client: AsyncClient, workspace):
    workspace.project("Team", "TEAM", id="p3")
    for role, count in ((Role.ADMIN, 2), (Role.DEV, 5), (Role.QA, 3)):
        for index in range(count):
            user_id = workspace.user(f"{role.value} {index}", Role.DEV)
            workspace.member("p3", user_id, role)

    response = await client.get("/api/reports/role-distribution", params={"projectId": "p3"}, headers=_as("admin"))

    data = response.json()
    assert data["totalMembers"] == 10
    assert data["projectCount"] == 1
    assert [role["role"] for role in data["roles"]] == ["ADMIN", "PO", "DEV", "QA", "VIEWER"]
    assert [role["count"] for role in data["roles"]] == [2, 0, 5, 3, 0]
    assert sum(role["percentage"] for role in data["roles"]) == pytest.approx(1.0)


# Orphaned work


@pytest.mark.asyncio
async def test_orphaned_work(client: AsyncClient, workspace):
    updated = datetime(2024, 1, 10)
    sprint = workspace.sprint("p1", start=datetime(2024, 1, 1), end=datetime(2024, 1, 14))
    unassigned = workspace.issue("p1", "Nobody owns me", sprint_id=sprint, created_at=updated)
    workspace.issue("p1", "Story", type=IssueType.STORY, assignee_id="dev", sprint_id=sprint, created_at=updated)
    workspace.issue(
        "p1", "Loose", status=IssueStatus.IN_PROGRESS, assignee_id="dev", epic_id="e1", created_at=updated
    )
    workspace.issue("p1", "Finished", status=IssueStatus.DONE, created_at=updated)
    workspace.standup("p1", "dev", datetime(2024, 1, 11), summary_today="Wrote docs")
    linked = workspace.standup("p1", "dev", datetime(2024, 1, 12), summary_today="Fixed bug")
    workspace.issue_link(linked, unassigned)

    response = await client.get("/api/reports/orphaned-work", params=JANUARY, headers=_as("admin"))

    data = response.json()
    assert data["counts"] == {"unassigned": 1, "missingEpic": 1, "unsprintedActive": 1, "unlinkedStandups": 1}
    assert data["samples"]["unassigned"][0]["title"] == "Nobody owns me"
    assert data["samples"]["unassigned"][0]["projectName"] == "Payments"
    assert data["samples"]["unsprintedActive"][0]["status"] == "IN_PROGRESS"
    standup = data["samples"]["unlinkedStandups"][0]
    assert (standup["date"], standup["userName"], standup["summary"]) == ("2024-01-11", "Dev", "Wrote docs")


# Sprints


@pytest.mark.asyncio
async def test_velocity_trend(client: AsyncClient, workspace):
    old = workspace.sprint("p1", "Sprint 0", SprintStatus.COMPLETED, datetime(2023, 12, 1), datetime(2023, 12, 14))
    new = workspace.sprint("p1", "Sprint 1", SprintStatus.COMPLETED, datetime(2024, 1, 1), datetime(2024, 1, 14))
    workspace.sprint("p1", "Sprint 2", SprintStatus.ACTIVE, datetime(2024, 1, 15), datetime(2024, 1, 28))
    for sprint, points, done_at in (
        (old, 4, datetime(2023, 12, 3)),
        (new, 5, datetime(2024, 1, 5)),
        (new, 3, datetime(2024, 1, 20)),
        (new, 2, None),
    ):
        issue = workspace.issue(
            "p1",
            status=IssueStatus.DONE if done_at else IssueStatus.TODO,
            story_points=points,
            sprint_id=sprint,
            created_at=datetime(2023, 11, 30),
        )
        if done_at:
            workspace.status_change(issue, IssueStatus.DONE, done_at)

    response = await client.get("/api/reports/velocity-trend", headers=_as("dev"))

    sprints = response.json()["sprints"]
    assert [sprint["name"] for sprint in sprints] == ["Sprint 1", "Sprint 0"]
    assert sprints[0] == {
        "id": new,
        "name": "Sprint 1",
        "endDate": "2024-01-14T00:00:00.000Z",
        "committedPoints": 10,
        "completedPoints": 5,
        "spilloverPoints": 5,
    }
    assert sprints[1]["spilloverPoints"] == 0

    limited = await client.get("/api/reports/velocity-trend", params={"limit": "1"}, headers=_as("dev"))
    assert len(limited.json()["sprints"]) == 1
    garbage = await client.get("/api/reports/velocity-trend", params={"limit": "lots"}, headers=_as("dev"))
    assert len(garbage.json()["sprints"]) == 2
    outsider = await client.get("/api/reports/velocity-trend", headers=_as("outsider"))
    assert outsider.status_code == 200
    assert outsider.json() == {"sprints": []}


@pytest.mark.asyncio
async def test_sprint_burndown_defaults_to_active_sprint(client: AsyncClient, workspace):
    sprint = workspace.sprint("p1", "Sprint 1", SprintStatus.ACTIVE, datetime(2024, 1, 1), datetime(2024, 1, 3))
    done = workspace.issue(
        "p1", status=IssueStatus.DONE, story_points=5, sprint_id=sprint, created_at=datetime(2024, 1, 1)
    )
    workspace.status_change(done, IssueStatus.DONE, datetime(2024, 1, 2, 15))
    workspace.issue("p1", story_points=3, sprint_id=sprint, created_at=datetime(2024, 1, 1))

    response = await client.get("/api/reports/sprint-burndown", headers=_as("dev"))

    assert response.status_code == 200
    data = response.json()
    assert data["sprint"]["id"] == sprint
    assert data["pointsTotal"] == 8
    assert data["series"] == [
        {"date": "2024-01-01", "remainingPoints": 8, "completedPoints": 0},
        {"date": "2024-01-02", "remainingPoints": 3, "completedPoints": 5},
        {"date": "2024-01-03", "remainingPoints": 3, "completedPoints": 5},
    ]

    forbidden = await client.get("/api/reports/sprint-burndown", params={"sprintId": sprint}, headers=_as("outsider"))
    assert forbidden.status_code == 403
    leadership = await client.get("/api/reports/sprint-burndown", params={"sprintId": sprint}, headers=_as("admin"))
    assert leadership.status_code == 200


@pytest.mark.asyncio
async def test_sprint_burndown_errors(client: AsyncClient, workspace):
    undated = workspace.sprint("p1", "Someday", SprintStatus.PLANNED)

    missing = await client.get("/api/reports/sprint-burndown", params={"sprintId": "nope"}, headers=_as("dev"))
    assert missing.status_code == 404
    assert missing.json() == {"message": "No sprint found"}

    no_active = await client.get("/api/reports/sprint-burndown", headers=_as("dev"))
    assert no_active.status_code == 404

    no_dates = await client.get("/api/reports/sprint-burndown", params={"sprintId": undated}, headers=_as("dev"))
    assert no_dates.status_code == 400
    assert no_dates.json() == {"message": "Sprint dates are not defined"}


# Standups


@pytest.mark.asyncio
async def test_standup_insights(client: AsyncClient, workspace):
    workspace.standup("p1", "dev", datetime(2024, 1, 1, 9), blockers="CI red; waiting on review", dependencies="Design")
    workspace.standup("p1", "po", datetime(2024, 1, 1, 10), blockers="ci red")
    workspace.summary("p1", datetime(2024, 1, 1), "Morning sync")
    workspace.summary("p1", datetime(2024, 1, 1, 18), "Evening sync")
    workspace.attendance("p1", "dev", datetime(2024, 1, 2))
    workspace.attendance("p1", "dev", datetime(2024, 1, 3))
    workspace.attendance("p1", "po", datetime(2024, 1, 3))
    workspace.attendance("p1", None, datetime(2024, 1, 3))
    workspace.attendance("p1", "po", datetime(2024, 1, 2), AttendanceStatus.PRESENT)

    response = await client.get(
        "/api/reports/standup-insights", params={"from": "2024-01-01", "to": "2024-01-03"}, headers=_as("admin")
    )

    data = response.json()
    assert [day["date"] for day in data["daily"]] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    first = data["daily"][0]
    assert (first["updatesCount"], first["blockersCount"], first["dependenciesCount"]) == (2, 3, 1)
    assert first["summary"] == "Morning sync\n\nEvening sync"
    assert data["daily"][1]["summary"] is None
    assert data["topBlockers"][0] == {"text": "CI red", "count": 2}
    assert data["topDependencies"] == [{"text": "Design", "count": 1}]
    assert data["missingUpdates"] == [
        {"userId": "dev", "name": "Dev", "missingDays": 2},
        {"userId": "po", "name": "Pat Owner", "missingDays": 1},
    ]


# Portfolio


@pytest.mark.asyncio
async def test_aging_issues(client: AsyncClient, workspace):
    now = datetime.utcnow()
    workspace.issue("p1", "Old", key="PAY-1", assignee_id="dev", created_at=now - timedelta(days=20))
    workspace.issue("p2", "Fresh", created_at=now - timedelta(days=3))
    workspace.issue("p1", "Done", status=IssueStatus.DONE, created_at=now - timedelta(days=25))
    params = {"from": (now - timedelta(days=30)).date().isoformat(), "to": now.date().isoformat()}

    response = await client.get("/api/reports/aging-issues", params=params, headers=_as("admin"))

    data = response.json()
    assert data["staleCount"] == 1
    assert data["staleIssues"][0] == {
        "key": "PAY-1",
        "title": "Old",
        "status": "TODO",
        "assignee": "Dev",
        "ageDays": 20,
        "project": "Payments",
        "daysSinceUpdate": 20,
    }

    wider = await client.get(
        "/api/reports/aging-issues", params={**params, "thresholdDays": "2"}, headers=_as("admin")
    )
    assert [issue["title"] for issue in wider.json()["staleIssues"]] == ["Old", "Fresh"]
    ignored = await client.get(
        "/api/reports/aging-issues", params={**params, "thresholdDays": "-4"}, headers=_as("admin")
    )
    assert ignored.json()["staleCount"] == 1


@pytest.mark.asyncio
async def test_inactive_projects(client: AsyncClient, workspace):
    workspace.project("Archive", "ARC", id="p3")
    workspace.standup("p1", "dev", datetime(2024, 1, 25, 9))
    workspace.issue("p2", "Stalled", created_at=datetime(2024, 1, 5))
    # activity after the window is ignored
    workspace.issue("p3", "Future", created_at=datetime(2024, 3, 1))

    response = await client.get("/api/reports/inactive-projects", params=JANUARY, headers=_as("admin"))

    data = response.json()
    assert data["inactiveDays"] == 14
    assert data["inactiveProjects"] == [
        {"projectId": "p3", "projectName": "Archive", "lastActivityAt": None, "lastActivityType": None},
        {
            "projectId": "p2",
            "projectName": "Search",
            "lastActivityAt": "2024-01-05T00:00:00.000Z",
            "lastActivityType": "issue_created",
        },
    ]

    longer = await client.get(
        "/api/reports/inactive-projects", params={**JANUARY, "inactiveDays": "30"}, headers=_as("admin")
    )
    assert [item["projectId"] for item in longer.json()["inactiveProjects"]] == ["p3"]


@pytest.mark.asyncio
async def test_cross_project_status(client: AsyncClient, workspace):
    for project, status in (
        ("p2", IssueStatus.TODO),
        ("p1", IssueStatus.DONE),
        ("p1", IssueStatus.DONE),
        ("p1", IssueStatus.IN_REVIEW),
    ):
        workspace.issue(project, status=status, created_at=datetime(2024, 1, 3), updated_at=datetime(2024, 1, 9))
    workspace.issue("p2", created_at=datetime(2023, 6, 1), updated_at=datetime(2023, 6, 2))

    response = await client.get("/api/reports/cross-project-status", params=JANUARY, headers=_as("po"))

    data = response.json()
    assert data["totalsByStatus"] == {"TODO": 1, "IN_PROGRESS": 0, "IN_REVIEW": 1, "DONE": 2}
    assert [project["projectName"] for project in data["projects"]] == ["Payments", "Search"]
    assert data["projects"][0]["countsByStatus"]["DONE"] == 2


@pytest.mark.asyncio
async def test_cross_project_status_empty_window(client: AsyncClient, workspace):
    response = await client.get("/api/reports/cross-project-status", params=JANUARY, headers=_as("admin"))
    assert response.json() == {
        "totalsByStatus": {"TODO": 0, "IN_PROGRESS": 0, "IN_REVIEW": 0, "DONE": 0},
        "projects": [],
    }
