"""Blocker theme reports built on standup entries."""

from __future__ import annotations

import logging
from collections import Counter

from app.adapters.board_store import ProjectRecord, StandupEntryRecord, session_scope
from app.models.report import (
    BlockerAggregationReport,
    BlockerThemesReport,
    PhraseCount,
    ProjectBlockerCount,
    ThemeCount,
)
from app.services import blocker_theme_service as themes
from app.services.report_access_service import ProjectScope
from app.services.report_dates import DateRange
from app.services.report_facts import standup_entries

logger = logging.getLogger(__name__)

TOP_BLOCKER_LIMIT = 10
TOP_PROJECT_LIMIT = 5
UNKNOWN_PROJECT = "Unknown project"


def _theme_counts(tallies: list[themes.ThemeTally]) -> list[ThemeCount]:
    return [ThemeCount(theme=t.theme, count=t.count, examples=list(t.examples)) for t in tallies]


def blocker_themes_report(scope: ProjectScope, window: DateRange) -> BlockerThemesReport:
    with session_scope() as session:
        entries = standup_entries(session, scope, window.start, window.end)
    tallies = themes.tally_workspace_themes(entry.blockers for entry in entries)
    return BlockerThemesReport(themes=_theme_counts(tallies))


def blocker_aggregation_report(scope: ProjectScope, window: DateRange) -> BlockerAggregationReport:
    with session_scope() as session:
        entries = standup_entries(session, scope, window.start, window.end)

        tallies: dict[str, themes.ThemeTally] = {}
        phrase_counts: dict[str, PhraseCount] = {}
        project_counts: Counter[str] = Counter()
        for entry in entries:
            phrases = themes.split_phrases(entry.blockers) + themes.split_phrases(entry.dependencies)
            for phrase in phrases:
                normalized = themes.normalize_phrase(phrase)
                if not normalized:
                    continue
                theme = themes.classify(
                    normalized,
                    themes.AGGREGATION_THEME_RULES,
                    match="substring",
                    fallback=themes.AGGREGATION_FALLBACK,
                )
                tallies.setdefault(theme, themes.ThemeTally(theme)).add(phrase)
                current = phrase_counts.get(normalized)
                if current is None:
                    phrase_counts[normalized] = PhraseCount(text=phrase, count=1)
                else:
                    current.count += 1
                project_counts[entry.project_id] += 1

        names: dict[str, str] = {}
        if project_counts:
            rows = (
                session.query(ProjectRecord.id, ProjectRecord.name)
                .filter(ProjectRecord.id.in_(list(project_counts.keys())))
                .all()
            )
            names = {project_id: name for project_id, name in rows}

    top_blockers = sorted(phrase_counts.values(), key=lambda item: -item.count)[:TOP_BLOCKER_LIMIT]
    projects = sorted(
        (
            ProjectBlockerCount(project_id=project_id, project_name=names.get(project_id, UNKNOWN_PROJECT), count=count)
            for project_id, count in project_counts.items()
        ),
        key=lambda item: -item.count,
    )[:TOP_PROJECT_LIMIT]
    logger.debug("blocker_aggregation_report entries=%s phrases=%s", len(entries), len(phrase_counts))
    return BlockerAggregationReport(
        themes=_theme_counts(themes.sorted_tallies(tallies)),
        top_blockers=top_blockers,
        projects_with_most_blockers=projects,
    )


def project_blocker_themes(project_id: str, window: DateRange) -> list[ThemeCount]:
    with session_scope() as session:
        rows = (
            session.query(StandupEntryRecord.blockers)
            .filter(
                StandupEntryRecord.project_id == project_id,
                StandupEntryRecord.date >= window.start,
                StandupEntryRecord.date <= window.end,
                StandupEntryRecord.blockers.is_not(None),
            )
            .all()
        )
    return _theme_counts(themes.tally_project_themes(row[0] for row in rows))
