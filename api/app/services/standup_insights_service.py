"""Daily standup activity, recurring blockers/dependencies and missed updates.

The project-scoped variant also raises nudge signals per member: missing
standups, persistent blockers, stale linked work and low-confidence entries.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from app.adapters.board_store import (
    IssueRecord,
    ReportCapabilities,
    StandupAttendanceRecord,
    StandupEntryIssueLinkRecord,
    StandupEntryRecord,
    StandupEntryResearchLinkRecord,
    StandupQualityDailyRecord,
    StandupSummaryRecord,
    UserRecord,
    session_scope,
)
from app.models.board import AttendanceStatus, IssueStatus
from app.models.report import (
    DailyStandupInsight,
    MissingUpdates,
    PhraseCount,
    ProjectStandupDay,
    ProjectStandupInsightsReport,
    SignalDefinition,
    StandupInsightsReport,
    StandupSignal,
)
from app.services.blocker_theme_service import normalize_phrase, split_phrases, split_snippets
from app.services.report_access_service import ProjectScope, apply_scope
from app.services.report_dates import DAY, DateRange, iso_day, iter_days, start_of_day
from app.services.report_facts import MemberFact, StandupFact, project_memberships, standup_entries

logger = logging.getLogger(__name__)

TOP_PHRASE_LIMIT = 10

AbsenceRow = tuple[str | None, str | None, str | None]


def _load_entries(scope: ProjectScope, window: DateRange) -> list[StandupFact]:
    with session_scope() as session:
        return standup_entries(session, scope, window.start, window.end)


def _load_absences(scope: ProjectScope, window: DateRange) -> list[AbsenceRow]:
    with session_scope() as session:
        query = (
            session.query(StandupAttendanceRecord.user_id, UserRecord.name, UserRecord.email)
            .outerjoin(UserRecord, UserRecord.id == StandupAttendanceRecord.user_id)
            .filter(
                StandupAttendanceRecord.status == AttendanceStatus.ABSENT.value,
                StandupAttendanceRecord.date >= window.start,
                StandupAttendanceRecord.date <= window.end,
            )
        )
        return [tuple(row) for row in apply_scope(query, StandupAttendanceRecord.project_id, scope).all()]


def _load_summaries(scope: ProjectScope, window: DateRange) -> list[tuple[datetime, str]]:
    with session_scope() as session:
        query = session.query(StandupSummaryRecord.date, StandupSummaryRecord.summary).filter(
            StandupSummaryRecord.date >= window.start,
            StandupSummaryRecord.date <= window.end,
        )
        rows = apply_scope(query, StandupSummaryRecord.project_id, scope)
        return [tuple(row) for row in rows.order_by(StandupSummaryRecord.date.asc()).all()]


def _count_phrases(phrases: list[str], counts: dict[str, PhraseCount]) -> None:
    for phrase in phrases:
        key = phrase.lower()
        current = counts.get(key)
        if current is None:
            counts[key] = PhraseCount(text=phrase, count=1)
        else:
            current.count += 1


def _top(counts: dict[str, PhraseCount]) -> list[PhraseCount]:
    return sorted(counts.values(), key=lambda item: -item.count)[:TOP_PHRASE_LIMIT]


def build_standup_insights(
    entries: list[StandupFact],
    absences: list[AbsenceRow],
    summaries: list[tuple[datetime, str]],
    window: DateRange,
) -> StandupInsightsReport:
    daily = {day.isoformat(): DailyStandupInsight(date=day.isoformat()) for day in iter_days(window.start, window.end)}

    blocker_counts: dict[str, PhraseCount] = {}
    dependency_counts: dict[str, PhraseCount] = {}
    for entry in entries:
        bucket = daily.get(entry.date.date().isoformat())
        if bucket is None:
            continue
        blockers = split_phrases(entry.blockers)
        dependencies = split_phrases(entry.dependencies)
        bucket.updates_count += 1
        bucket.blockers_count += len(blockers)
        bucket.dependencies_count += len(dependencies)
        _count_phrases(blockers, blocker_counts)
        _count_phrases(dependencies, dependency_counts)

    for day, summary in summaries:
        bucket = daily.get(day.date().isoformat())
        if bucket is None:
            continue
        bucket.summary = f"{bucket.summary}\n\n{summary}" if bucket.summary else summary

    missing: dict[str, MissingUpdates] = {}
    for user_id, name, email in absences:
        if not user_id:
            continue
        current = missing.get(user_id)
        if current is None:
            missing[user_id] = MissingUpdates(user_id=user_id, name=name or email or user_id, missing_days=1)
        else:
            current.missing_days += 1

    return StandupInsightsReport(
        daily=sorted(daily.values(), key=lambda item: item.date),
        top_blockers=_top(blocker_counts),
        top_dependencies=_top(dependency_counts),
        missing_updates=sorted(missing.values(), key=lambda item: -item.missing_days),
    )


async def standup_insights_report(scope: ProjectScope, window: DateRange) -> StandupInsightsReport:
    entries, absences, summaries = await asyncio.gather(
        asyncio.to_thread(_load_entries, scope, window),
        asyncio.to_thread(_load_absences, scope, window),
        asyncio.to_thread(_load_summaries, scope, window),
    )
    logger.debug(
        "standup_insights_report entries=%s absences=%s summaries=%s",
        len(entries),
        len(absences),
        len(summaries),
    )
    return build_standup_insights(entries, absences, summaries, window)


# Project-scoped insights and nudge signals

EXCERPT_MAX_CHARS = 160
DAILY_TOP_BLOCKERS = 3
MISSING_STANDUP_DAYS = 2
PERSISTENT_BLOCKER_MIN_CHARS = 8
STALE_WORK_HOURS = 72
CONFIDENCE_THRESHOLD = 0.55
LOW_QUALITY_SCORE = 50
SEVERITY_WEIGHT = {"low": 1, "medium": 2, "high": 3}

_CHAIN_SPLIT = re.compile(r"[\n.;]+")
_VAGUE_UPDATE = re.compile(r"\b(same|as usual|n/a|na|todo|tbd|working on it|stuff)\b")

SIGNAL_DEFINITIONS: dict[str, SignalDefinition] = {
    "MISSING_STANDUP": SignalDefinition(
        threshold="2 missed standup days",
        description=(
            "Raised once a member has missed two days. 'since' is the first missed day after "
            "their latest submission in the selected range."
        ),
    ),
    "PERSISTENT_BLOCKER": SignalDefinition(
        threshold="same blocker key appears on 2+ days",
        description=(
            "Blockers match on normalized text plus the linked work ids. Evidence lists every "
            "entry in the matching chain."
        ),
    ),
    "STALE_WORK": SignalDefinition(
        threshold=">=72h inactive",
        description="Linked work that is not DONE and has neither an issue update nor a standup mention for 72+ hours.",
    ),
    "LOW_CONFIDENCE": SignalDefinition(
        threshold="entry confidence < 0.55 on 2+ entries",
        description="Entries lose confidence for missing blockers, missing linked work and vague updates.",
    ),
}


@dataclass(frozen=True)
class ProjectEntry:
    id: str
    user_id: str
    date: datetime
    blockers: str | None
    dependencies: str | None
    summary_today: str | None
    progress_since_yesterday: str | None
    issue_ids: tuple[str, ...] = ()
    research_ids: tuple[str, ...] = ()

    @property
    def day(self) -> str:
        return self.date.date().isoformat()


@dataclass(frozen=True)
class LinkedIssue:
    id: str
    status: str
    updated_at: datetime
    assignee_id: str | None


@dataclass
class ProjectStandupFacts:
    entries: list[ProjectEntry]
    members: list[MemberFact]
    summaries: dict[str, str]
    linked_issues: list[LinkedIssue]
    quality: list[tuple[datetime, float]]


def _links(session, model, column, entry_ids: list[str]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = defaultdict(list)
    if not entry_ids:
        return out
    for entry_id, linked_id in (
        session.query(model.standup_entry_id, column).filter(model.standup_entry_id.in_(entry_ids)).all()
    ):
        out[entry_id].append(linked_id)
    return out


def load_project_standup_facts(
    project_id: str, window: DateRange, *, include_quality: bool = False
) -> ProjectStandupFacts:
    with session_scope() as session:
        rows = (
            session.query(StandupEntryRecord)
            .filter(
                StandupEntryRecord.project_id == project_id,
                StandupEntryRecord.date >= window.start,
                StandupEntryRecord.date <= window.end,
            )
            .order_by(StandupEntryRecord.date.asc())
            .all()
        )
        entry_ids = [row.id for row in rows]
        issue_links = _links(session, StandupEntryIssueLinkRecord, StandupEntryIssueLinkRecord.issue_id, entry_ids)
        research_links = _links(
            session,
            StandupEntryResearchLinkRecord,
            StandupEntryResearchLinkRecord.research_item_id,
            entry_ids,
        )
        entries = [
            ProjectEntry(
                id=row.id,
                user_id=row.user_id,
                date=row.date,
                blockers=row.blockers,
                dependencies=row.dependencies,
                summary_today=row.summary_today,
                progress_since_yesterday=row.progress_since_yesterday,
                issue_ids=tuple(issue_links.get(row.id, [])),
                research_ids=tuple(research_links.get(row.id, [])),
            )
            for row in rows
        ]

        summaries = {
            day.date().isoformat(): summary
            for day, summary in session.query(StandupSummaryRecord.date, StandupSummaryRecord.summary)
            .filter(
                StandupSummaryRecord.project_id == project_id,
                StandupSummaryRecord.date >= window.start,
                StandupSummaryRecord.date <= window.end,
            )
            .order_by(StandupSummaryRecord.date.asc())
            .all()
        }

        linked_ids = sorted({issue_id for entry in entries for issue_id in entry.issue_ids})
        linked_issues = []
        if linked_ids:
            linked_issues = [
                LinkedIssue(id=row.id, status=row.status, updated_at=row.updated_at, assignee_id=row.assignee_id)
                for row in session.query(IssueRecord).filter(IssueRecord.id.in_(linked_ids)).all()
            ]

        quality: list[tuple[datetime, float]] = []
        if include_quality:
            quality = [
                (row.date, row.quality_score)
                for row in session.query(StandupQualityDailyRecord)
                .filter(
                    StandupQualityDailyRecord.project_id == project_id,
                    StandupQualityDailyRecord.date >= window.start,
                    StandupQualityDailyRecord.date <= window.end,
                )
                .all()
            ]

        members = project_memberships(session, [project_id])

    return ProjectStandupFacts(
        entries=entries,
        members=members,
        summaries=summaries,
        linked_issues=linked_issues,
        quality=quality,
    )


def excerpt(value: str | None) -> str | None:
    if not value:
        return None
    normalized = " ".join(value.split())
    if len(normalized) > EXCERPT_MAX_CHARS:
        return f"{normalized[:EXCERPT_MAX_CHARS - 3]}..."
    return normalized


def _filled(value: str | None) -> bool:
    return bool(value and value.strip())


def _unique(values) -> list[str]:
    return list(dict.fromkeys(values))


def _project_daily(facts: ProjectStandupFacts, days: list[date]) -> list[ProjectStandupDay]:
    by_day: dict[str, list[ProjectEntry]] = defaultdict(list)
    for entry in facts.entries:
        by_day[entry.day].append(entry)

    daily = []
    for day in days:
        key = day.isoformat()
        day_entries = by_day.get(key, [])
        blockers = [entry.blockers.strip() for entry in day_entries if _filled(entry.blockers)]
        summary = facts.summaries.get(key)
        daily.append(
            ProjectStandupDay(
                date=key,
                entry_ids=[entry.id for entry in day_entries],
                blockers_count=len(blockers),
                dependencies_count=sum(1 for entry in day_entries if _filled(entry.dependencies)),
                updates_count=len(day_entries),
                top_blockers=_unique(phrase for text in blockers for phrase in split_snippets(text))[
                    :DAILY_TOP_BLOCKERS
                ],
                has_ai_summary=bool(summary),
                summary=summary,
                summary_excerpt=excerpt(summary),
            )
        )
    return daily


class _SignalBuilder:
    def __init__(self, members: list[MemberFact]):
        self.names = {member.user_id: member.name or member.email or member.user_id for member in members}
        self.signals: list[StandupSignal] = []

    def add(self, signal_id: str, signal_type: str, owner: str, severity: str, since: str, evidence, linked) -> None:
        self.signals.append(
            StandupSignal(
                id=signal_id,
                signal_type=signal_type,
                owner_user_id=owner,
                owner_name=self.names.get(owner, owner),
                severity=severity,
                since=since,
                evidence_entry_ids=list(evidence),
                linked_work_ids=list(linked),
            )
        )

    def ranked(self) -> list[StandupSignal]:
        latest: dict[str, StandupSignal] = {}
        for signal in self.signals:
            latest[f"{signal.signal_type}:{signal.owner_user_id}"] = signal
        return sorted(latest.values(), key=lambda signal: (-SEVERITY_WEIGHT[signal.severity], signal.since))


def _missing_standups(facts: ProjectStandupFacts, days: list[date], window: DateRange, out: _SignalBuilder) -> None:
    by_user: dict[str, list[ProjectEntry]] = defaultdict(list)
    for entry in facts.entries:
        by_user[entry.user_id].append(entry)

    for member in facts.members:
        entries = by_user.get(member.user_id, [])
        submitted = {entry.day for entry in entries}
        last = entries[-1] if entries else None
        since = last.date + DAY if last else window.start
        missing = [
            day.isoformat() for day in days if start_of_day(day) >= since and day.isoformat() not in submitted
        ]
        if len(missing) < MISSING_STANDUP_DAYS:
            continue
        out.add(
            f"missing-{member.user_id}",
            "MISSING_STANDUP",
            member.user_id,
            "high" if len(missing) >= 3 else "medium",
            missing[0],
            [last.id] if last else [],
            [],
        )


def _persistent_blockers(facts: ProjectStandupFacts, out: _SignalBuilder) -> None:
    chains: dict[str, dict[str, list[ProjectEntry]]] = {}
    for entry in facts.entries:
        if not _filled(entry.blockers):
            continue
        linked_key = ",".join(sorted(set(entry.issue_ids))) or "none"
        phrases = [normalize_phrase(part) for part in _CHAIN_SPLIT.split(entry.blockers.strip())]
        owner_chains = chains.setdefault(entry.user_id, {})
        for phrase in phrases:
            if len(phrase) < PERSISTENT_BLOCKER_MIN_CHARS:
                continue
            owner_chains.setdefault(f"{phrase}::{linked_key}", []).append(entry)

    for owner, owner_chains in chains.items():
        best: list[ProjectEntry] = []
        for chain in owner_chains.values():
            if len({entry.day for entry in chain}) >= 2 and len(chain) > len(best):
                best = chain
        if not best:
            continue
        ordered = sorted(best, key=lambda entry: entry.date)
        out.add(
            f"persistent-blocker-{owner}",
            "PERSISTENT_BLOCKER",
            owner,
            "high" if len(ordered) >= 3 else "medium",
            ordered[0].day,
            [entry.id for entry in ordered],
            _unique(issue_id for entry in ordered for issue_id in entry.issue_ids),
        )


def _stale_work(facts: ProjectStandupFacts, window: DateRange, out: _SignalBuilder) -> None:
    cutoff = start_of_day(window.end) - timedelta(hours=STALE_WORK_HOURS)
    for issue in facts.linked_issues:
        if issue.status == IssueStatus.DONE.value:
            continue
        related = [entry for entry in facts.entries if issue.id in entry.issue_ids]
        if not related:
            continue
        last_mention = max(entry.date for entry in related)
        if issue.updated_at > cutoff or last_mention > cutoff:
            continue
        owner = issue.assignee_id or related[0].user_id
        out.add(
            f"stale-work-{issue.id}",
            "STALE_WORK",
            owner,
            "medium",
            iso_day(issue.updated_at),
            [entry.id for entry in related],
            [issue.id],
        )


def _is_vague(entry: ProjectEntry) -> bool:
    parts = [part.strip() for part in (entry.progress_since_yesterday, entry.summary_today) if _filled(part)]
    combined = " ".join(parts).lower()
    return not combined or len(combined) < 25 or _VAGUE_UPDATE.search(combined) is not None


def entry_confidence(entry: ProjectEntry) -> float:
    penalties = sum(
        (
            not _filled(entry.blockers),
            not entry.issue_ids and not entry.research_ids,
            _is_vague(entry),
        )
    )
    return max(0.0, 1 - penalties / 3)


def _low_confidence(facts: ProjectStandupFacts, days: list[date], out: _SignalBuilder) -> None:
    by_user: dict[str, list[ProjectEntry]] = defaultdict(list)
    for entry in facts.entries:
        if entry_confidence(entry) < CONFIDENCE_THRESHOLD:
            by_user[entry.user_id].append(entry)

    for owner, entries in by_user.items():
        if len(entries) < 2:
            continue
        ordered = sorted(entries, key=lambda entry: entry.date)
        out.add(
            f"low-confidence-{owner}",
            "LOW_CONFIDENCE",
            owner,
            "high" if len(entries) >= 3 else "low",
            ordered[0].day,
            [entry.id for entry in ordered],
            _unique(issue_id for entry in ordered for issue_id in entry.issue_ids),
        )

    in_range = {day.isoformat() for day in days}
    for snapshot_date, score in facts.quality:
        key = snapshot_date.date().isoformat()
        if score >= LOW_QUALITY_SCORE or key not in in_range:
            continue
        for entry in facts.entries:
            if entry.day != key:
                continue
            out.add(
                f"low-confidence-quality-{entry.id}",
                "LOW_CONFIDENCE",
                entry.user_id,
                "medium",
                key,
                [entry.id],
                entry.issue_ids,
            )


def build_project_standup_insights(facts: ProjectStandupFacts, window: DateRange) -> ProjectStandupInsightsReport:
    days = list(iter_days(window.start, window.end))
    signals = _SignalBuilder(facts.members)
    _missing_standups(facts, days, window, signals)
    _persistent_blockers(facts, signals)
    _stale_work(facts, window, signals)
    _low_confidence(facts, days, signals)
    return ProjectStandupInsightsReport(
        daily=_project_daily(facts, days),
        signals=signals.ranked(),
        signal_definitions=SIGNAL_DEFINITIONS,
    )


def project_standup_insights(
    project_id: str,
    window: DateRange,
    capabilities: ReportCapabilities | None = None,
) -> ProjectStandupInsightsReport:
    include_quality = bool(capabilities and capabilities.standup_quality)
    facts = load_project_standup_facts(project_id, window, include_quality=include_quality)
    report = build_project_standup_insights(facts, window)
    logger.debug(
        "project_standup_insights project=%s entries=%s signals=%s quality=%s",
        project_id,
        len(facts.entries),
        len(report.signals),
        include_quality,
    )
    return report
