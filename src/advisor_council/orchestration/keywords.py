"""
Keyword tables -- the lexical rules the engine matches against free text.

All tables load from data/keywords.json (or COUNCIL_KEYWORDS_PATH) so they can
be tuned without code changes. Word matching is case-insensitive and bounded
by non-word characters, so "ai" does not match "email".
"""

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_KEYWORDS_PATH = Path(__file__).resolve().parent.parent / "data" / "keywords.json"


@lru_cache(maxsize=512)
def _word_pattern(phrase: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(phrase.lower())}(?!\w)")


def contains_word(text: str, phrase: str) -> bool:
    """True if phrase occurs in text as a whole word (case-insensitive)."""
    return bool(_word_pattern(phrase).search(text.lower()))


def contains_any(text: str, phrases: list[str]) -> bool:
    return any(contains_word(text, p) for p in phrases)


@dataclass(frozen=True)
class SpecialistTrigger:
    """Adds one specialist when a context fact or a description word matches."""

    expert: str
    concerns: tuple[str, ...] = ()
    priorities: tuple[str, ...] = ()
    words: tuple[str, ...] = ()


@dataclass(frozen=True)
class FactRule:
    """Records a discovery fact when any word matches and no 'unless' word does."""

    fact: str
    words: tuple[str, ...]
    unless: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not contains_any(text, list(self.words)):
            return False
        return not (self.unless and contains_any(text, list(self.unless)))


@dataclass
class KeywordTables:
    """Parsed keyword tables. Built by load_keyword_tables()."""

    specialist_triggers: list[SpecialistTrigger] = field(default_factory=list)
    timeline_pattern: re.Pattern = re.compile(r"(\d+)\s*(month|week|year)s?")
    constraint_rules: list[FactRule] = field(default_factory=list)
    priority_rules: list[FactRule] = field(default_factory=list)
    concern_rules: list[FactRule] = field(default_factory=list)
    target_user_rules: list[FactRule] = field(default_factory=list)
    project_types: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    consensus_categories: dict[str, tuple[str, ...]] = field(default_factory=dict)
    question_indicators: tuple[str, ...] = ()
    error_markers: tuple[str, ...] = ()
    tech_groups: dict[str, dict[str, tuple[str, ...]]] = field(default_factory=dict)
    implementation_marker: str = "BUILD INSTRUCTIONS"

    def categories_in(self, text: str) -> set[str]:
        """Technology categories mentioned in text (for consensus detection)."""
        return {
            category
            for category, words in self.consensus_categories.items()
            if contains_any(text, list(words))
        }

    def has_question(self, text: str) -> bool:
        lowered = text.lower()
        return any(indicator in lowered for indicator in self.question_indicators)


def _fact_rules(raw: list[dict[str, Any]]) -> list[FactRule]:
    return [
        FactRule(
            fact=r["fact"],
            words=tuple(r.get("words", [])),
            unless=tuple(r.get("unless", [])),
        )
        for r in raw
    ]


def parse_keyword_tables(data: dict[str, Any]) -> KeywordTables:
    """Build KeywordTables from the decoded JSON document."""
    discovery = data.get("discovery", {})
    return KeywordTables(
        specialist_triggers=[
            SpecialistTrigger(
                expert=t["expert"],
                concerns=tuple(t.get("concerns", [])),
                priorities=tuple(t.get("priorities", [])),
                words=tuple(t.get("words", [])),
            )
            for t in data.get("specialist_triggers", [])
        ],
        timeline_pattern=re.compile(
            discovery.get("timeline_pattern", r"(\d+)\s*(month|week|year)s?")
        ),
        constraint_rules=_fact_rules(discovery.get("constraints", [])),
        priority_rules=_fact_rules(discovery.get("priorities", [])),
        concern_rules=_fact_rules(discovery.get("concerns", [])),
        target_user_rules=_fact_rules(discovery.get("target_users", [])),
        project_types=[
            (p["type"], tuple(p.get("words", []))) for p in data.get("project_types", [])
        ],
        consensus_categories={
            name: tuple(words)
            for name, words in data.get("consensus_categories", {}).items()
        },
        question_indicators=tuple(
            i.lower() for i in data.get("question_indicators", [])
        ),
        error_markers=tuple(m.lower() for m in data.get("error_markers", [])),
        tech_groups={
            group: {name: tuple(words) for name, words in techs.items()}
            for group, techs in data.get("tech_groups", {}).items()
        },
        implementation_marker=data.get("implementation_marker", "BUILD INSTRUCTIONS"),
    )


def load_keyword_tables(path: str | Path | None = None) -> KeywordTables:
    """Load keyword tables from a JSON file (defaults to the packaged tables)."""
    source = Path(path) if path else DEFAULT_KEYWORDS_PATH
    with open(source, encoding="utf-8") as f:
        data = json.load(f)
    tables = parse_keyword_tables(data)
    logger.debug(
        f"[Keywords] Loaded {len(tables.specialist_triggers)} specialist triggers, "
        f"{len(tables.consensus_categories)} consensus categories from {source}"
    )
    return tables
