"""
Discovery rules -- lexical fact extraction and the readiness predicate.

Facts only accumulate: list facts are appended once, single-valued facts
(timeline, target users) keep the first value seen.
"""

import logging

from ..harness.session import Session, UserContext
from .keywords import KeywordTables, contains_any

logger = logging.getLogger(__name__)

MIN_USER_TURNS = 2
MAX_DISCOVERY_TURNS = 4


def extract_facts(context: UserContext, text: str, keywords: KeywordTables) -> list[str]:
    """Update context from one user turn. Returns the facts newly recorded."""
    lowered = text.lower()
    added: list[str] = []

    match = keywords.timeline_pattern.search(lowered)
    if match:
        amount, unit = match.group(1), match.group(2)
        value = f"{amount} {unit}s" if amount != "1" else f"{amount} {unit}"
        if context.set_timeline(value):
            added.append(f"timeline: {value}")

    for rule in keywords.constraint_rules:
        if rule.matches(lowered) and context.add_constraint(rule.fact):
            added.append(rule.fact)

    for rule in keywords.priority_rules:
        if rule.matches(lowered) and context.add_priority(rule.fact):
            added.append(rule.fact)

    for rule in keywords.concern_rules:
        if rule.matches(lowered) and context.add_concern(rule.fact):
            added.append(rule.fact)

    for rule in keywords.target_user_rules:
        if rule.matches(lowered) and context.set_target_users(rule.fact):
            added.append(f"target users: {rule.fact}")
            break

    if added:
        logger.debug(f"[Discovery] New facts: {added}")
    return added


def is_ready(session: Session) -> bool:
    """Enough user turns, plus either a concrete fact or a long enough conversation."""
    turns = session.user_turns
    if turns < MIN_USER_TURNS:
        return False
    return session.context.has_facts or turns >= MAX_DISCOVERY_TURNS


def detect_project_type(text: str, keywords: KeywordTables) -> str:
    for project_type, words in keywords.project_types:
        if contains_any(text, list(words)):
            return project_type
    return "general"
