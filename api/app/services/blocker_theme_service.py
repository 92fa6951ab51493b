"""Keyword theme classification over standup blocker and dependency text.

Three rule sets are in use:

- ``WORKSPACE_THEME_RULES``: word match after stop-word removal, first match wins.
- ``AGGREGATION_THEME_RULES``: substring match on normalized text, first match wins.
- ``PROJECT_THEME_RULES``: whole-word match, every matching theme is counted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Literal

MatchMode = Literal["word", "substring"]

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_PHRASE_SPLIT = re.compile(r"[\n\r;\-,]+")
_SNIPPET_SPLIT = re.compile(r"\n|\.|;")

EXAMPLE_LIMIT = 3
EXAMPLE_MAX_CHARS = 140
NO_BLOCKERS_THEME = "No blockers reported"


@dataclass(frozen=True)
class ThemeRule:
    theme: str
    keywords: tuple[str, ...]


@dataclass
class ThemeTally:
    theme: str
    count: int = 0
    examples: list[str] = field(default_factory=list)

    def add(self, example: str, limit: int = EXAMPLE_LIMIT) -> None:
        self.count += 1
        if len(self.examples) < limit:
            self.examples.append(example)


WORKSPACE_STOP_WORDS = frozenset(
    "the a an and of to in for on with at by from is was are be this that it".split()
)

PROJECT_STOP_WORDS = frozenset(
    (
        "the a an and to of in for on at with is it this that these those i we they you my our "
        "their was were am are be been have has had do does did from by as about too so but if "
        "or not no can could should would will just them then than when what which while because"
    ).split()
)

WORKSPACE_THEME_RULES: tuple[ThemeRule, ...] = (
    ThemeRule("Backend/API", ("api", "backend", "endpoint")),
    ThemeRule("Frontend/UI", ("ui", "frontend", "css")),
    ThemeRule("Deployment/Build", ("deploy", "render", "build", "prisma")),
    ThemeRule("Requirements", ("requirements", "spec", "clarify")),
    ThemeRule("Access/Permissions", ("access", "permission", "role")),
)
WORKSPACE_FALLBACK = "Other"

AGGREGATION_THEME_RULES: tuple[ThemeRule, ...] = (
    ThemeRule("AUTH", ("auth", "login", "token", "oauth", "session")),
    ThemeRule("DEPLOYMENT", ("deploy", "deployment", "release", "pipeline", "ci", "cd", "rollback")),
    ThemeRule("ENV", ("env", "environment", "staging", "prod", "uat", "sandbox", "config")),
    ThemeRule("API", ("api", "endpoint", "request", "response", "integration")),
    ThemeRule("DB", ("db", "database", "query", "sql", "postgres", "schema")),
    ThemeRule("UI", ("ui", "frontend", "button", "page", "css", "layout", "react")),
    ThemeRule("PEOPLE", ("approval", "review", "manager", "stakeholder", "legal", "waiting on", "oncall")),
    ThemeRule("PROCESS", ("process", "sprint", "grooming", "backlog", "planning", "retro", "ceremony")),
)
AGGREGATION_FALLBACK = "OTHER"

PROJECT_THEME_RULES: tuple[ThemeRule, ...] = (
    ThemeRule("Dependencies & Waiting", ("dependency", "dependencies", "waiting", "blocked", "pending")),
    ThemeRule("Access & Permissions", ("access", "permission", "permissions", "credential", "login")),
    ThemeRule("Reviews & Approvals", ("review", "approval", "approve", "pr", "pull", "merge")),
    ThemeRule("Environment & Deploys", ("env", "environment", "deploy", "deployment", "server", "staging", "prod")),
    ThemeRule("Testing & Quality", ("test", "tests", "qa", "flaky", "regression", "bug")),
    ThemeRule("API & Backend", ("api", "service", "endpoint", "prisma", "db", "database")),
)
PROJECT_FALLBACK = "Other"


def split_phrases(text: str | None) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in _PHRASE_SPLIT.split(text) if part.strip()]


def split_snippets(text: str | None) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in _SNIPPET_SPLIT.split(text) if part.strip()]


def normalize_phrase(text: str, stop_words: frozenset[str] = frozenset()) -> str:
    """Lowercase, punctuation to spaces, collapse whitespace, drop stop words."""
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return " ".join(word for word in _WHITESPACE.split(cleaned) if word and word not in stop_words)


def _matches(normalized: str, words: set[str], keyword: str, match: MatchMode) -> bool:
    if match == "substring":
        return keyword in normalized
    if " " in keyword:
        return f" {keyword} " in f" {normalized} "
    return keyword in words


def classify(
    normalized: str,
    rules: Iterable[ThemeRule],
    *,
    match: MatchMode = "word",
    fallback: str = WORKSPACE_FALLBACK,
) -> str:
    words = set(normalized.split())
    for rule in rules:
        if any(_matches(normalized, words, keyword, match) for keyword in rule.keywords):
            return rule.theme
    return fallback


def classify_all(
    normalized: str,
    rules: Iterable[ThemeRule] = PROJECT_THEME_RULES,
    *,
    fallback: str = PROJECT_FALLBACK,
) -> list[str]:
    words = set(normalized.split())
    matched = [
        rule.theme
        for rule in rules
        if any(_matches(normalized, words, keyword, "word") for keyword in rule.keywords)
    ]
    if not matched and normalized:
        matched.append(fallback)
    return matched


def trim_example(text: str, max_chars: int = EXAMPLE_MAX_CHARS) -> str:
    clean = _WHITESPACE.sub(" ", text.strip())
    if len(clean) > max_chars:
        return f"{clean[: max_chars - 3]}..."
    return clean


def sorted_tallies(tallies: dict[str, ThemeTally]) -> list[ThemeTally]:
    # stable: ties keep first-seen order
    return sorted(tallies.values(), key=lambda tally: -tally.count)


def tally_workspace_themes(texts: Iterable[str | None]) -> list[ThemeTally]:
    tallies: dict[str, ThemeTally] = {}
    for text in texts:
        for phrase in split_phrases(text):
            normalized = normalize_phrase(phrase, WORKSPACE_STOP_WORDS)
            if not normalized:
                continue
            theme = classify(normalized, WORKSPACE_THEME_RULES, match="word", fallback=WORKSPACE_FALLBACK)
            tallies.setdefault(theme, ThemeTally(theme)).add(phrase)
    return sorted_tallies(tallies)


def tally_project_themes(texts: Iterable[str | None]) -> list[ThemeTally]:
    tallies: dict[str, ThemeTally] = {}
    for text in texts:
        if not (text or "").strip():
            continue
        for snippet in split_snippets(text):
            normalized = normalize_phrase(snippet, PROJECT_STOP_WORDS)
            for theme in classify_all(normalized):
                tallies.setdefault(theme, ThemeTally(theme)).add(trim_example(snippet))
    if not tallies:
        return [ThemeTally(NO_BLOCKERS_THEME)]
    return sorted_tallies(tallies)
