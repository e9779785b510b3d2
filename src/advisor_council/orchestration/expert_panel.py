"""
ExpertPanel -- the expert catalog and deterministic team selection.

Selection always starts with the two generalists (backend, frontend) and adds
specialists in table order when a context fact or a description word matches
a trigger. The result is de-duplicated and capped at max_experts (at most 4).

Usage:
    panel = ExpertPanel(keywords)
    decision = panel.route(session.context)
    decision.experts   # ("backend-specialist", "frontend-specialist", ...)
    decision.reasons   # {"security-specialist": "word: payment", ...}
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..harness.session import UserContext
from .keywords import KeywordTables, contains_word

logger = logging.getLogger(__name__)

MAX_PANEL_SIZE = 4


class ExpertId(str, Enum):
    FRONTEND = "frontend-specialist"
    BACKEND = "backend-specialist"
    DATABASE = "database-specialist"
    SECURITY = "security-specialist"
    ARCHITECT = "system-architect"
    DEVOPS = "devops-specialist"
    MOBILE = "mobile-specialist"
    AI = "ai-specialist"


@dataclass(frozen=True)
class ExpertProfile:
    id: str
    name: str
    priority: int
    focus: str


CATALOG: dict[str, ExpertProfile] = {
    p.id: p
    for p in (
        ExpertProfile(ExpertId.FRONTEND.value, "Frontend Specialist", 1,
                      "user interfaces, component architecture, accessibility and UX"),
        ExpertProfile(ExpertId.BACKEND.value, "Backend Specialist", 1,
                      "APIs, services, authentication and server-side architecture"),
        ExpertProfile(ExpertId.DATABASE.value, "Database Expert", 2,
                      "data modeling, storage engines, indexing and analytics"),
        ExpertProfile(ExpertId.SECURITY.value, "Security Expert", 2,
                      "threat modeling, authentication, payments and data protection"),
        ExpertProfile(ExpertId.ARCHITECT.value, "System Architect", 1,
                      "system design, scalability and long-term maintainability"),
        ExpertProfile(ExpertId.DEVOPS.value, "DevOps Engineer", 3,
                      "deployment, CI/CD, infrastructure and observability"),
        ExpertProfile(ExpertId.MOBILE.value, "Mobile Expert", 3,
                      "iOS, Android and cross-platform mobile development"),
        ExpertProfile(ExpertId.AI.value, "AI/ML Expert", 3,
                      "machine learning features, model integration and data pipelines"),
    )
}

BASELINE = (ExpertId.BACKEND.value, ExpertId.FRONTEND.value)


@dataclass
class PanelDecision:
    """Which experts were selected and why."""

    experts: tuple[str, ...] = ()
    reasons: dict[str, str] = field(default_factory=dict)


class ExpertPanel:
    """Expert catalog plus the selection rules from the keyword tables."""

    def __init__(self, keywords: KeywordTables, max_experts: int = MAX_PANEL_SIZE):
        self._keywords = keywords
        self._max_experts = max(1, min(max_experts, MAX_PANEL_SIZE))

    def catalog(self) -> list[ExpertProfile]:
        return list(CATALOG.values())

    def profile(self, expert_id: str) -> ExpertProfile:
        """Profile for an expert id; unknown ids get a generic consultant profile."""
        if expert_id in CATALOG:
            return CATALOG[expert_id]
        name = expert_id.replace("-", " ").title()
        return ExpertProfile(expert_id, name, 3, "general software delivery")

    def display_name(self, expert_id: str) -> str:
        return self.profile(expert_id).name

    def route(self, context: UserContext, max_experts: int | None = None) -> PanelDecision:
        cap = self._max_experts if max_experts is None else max(1, min(max_experts, MAX_PANEL_SIZE))
        description = context.project_description or ""

        ordered: list[str] = []
        reasons: dict[str, str] = {}
        for expert in BASELINE:
            ordered.append(expert)
            reasons[expert] = "baseline"

        for trigger in self._keywords.specialist_triggers:
            reason = self._trigger_reason(trigger, context, description)
            if reason and trigger.expert not in reasons:
                ordered.append(trigger.expert)
                reasons[trigger.expert] = reason

        selected = tuple(ordered[:cap])
        decision = PanelDecision(
            experts=selected,
            reasons={e: reasons[e] for e in selected},
        )
        logger.debug(f"[ExpertPanel] Selected {list(selected)} (cap={cap})")
        return decision

    def select(self, context: UserContext, max_experts: int | None = None) -> tuple[str, ...]:
        return self.route(context, max_experts).experts

    @staticmethod
    def _trigger_reason(trigger, context: UserContext, description: str) -> str:
        for concern in trigger.concerns:
            if concern in context.concerns:
                return f"concern: {concern}"
        for priority in trigger.priorities:
            if priority in context.priorities:
                return f"priority: {priority}"
        for word in trigger.words:
            if contains_word(description, word):
                return f"word: {word}"
        return ""
