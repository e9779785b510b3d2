"""
Prompt construction for every generation call the engine makes.

The engine only depends on the PromptBuilder protocol; DefaultPromptBuilder is
a plain implementation. User-authored text is always wrapped with
wrap_user_content() so it is treated as data, never as instructions.
"""

from typing import Protocol

from ..harness.session import (
    ExpertMessage,
    Message,
    OrchestratorMessage,
    Plan,
    Session,
    UserMessage,
)
from ..security.prompt_guard import wrap_user_content
from .client import CacheablePrompt

TRANSCRIPT_WINDOW = 12
IMPLEMENTATION_MARKER = "BUILD INSTRUCTIONS"


class PromptBuilder(Protocol):
    def for_orchestrator(
        self, session: Session, response_type: str, user_text: str | None = None
    ) -> CacheablePrompt: ...

    def for_expert(
        self, session: Session, expert_id: str, expert_name: str, focus: str, round_number: int
    ) -> CacheablePrompt: ...

    def for_expert_reply(
        self, session: Session, expert_id: str, expert_name: str, focus: str, user_text: str
    ) -> CacheablePrompt: ...

    def for_plan(
        self,
        session: Session,
        expert_id: str,
        expert_name: str,
        focus: str,
        discussion: list[ExpertMessage],
    ) -> CacheablePrompt: ...

    def for_synthesis(self, session: Session, plans: list[Plan]) -> CacheablePrompt: ...


def _context_block(session: Session) -> str:
    ctx = session.context
    lines = ["Project context:", wrap_user_content(ctx.project_description, "PROJECT")]
    if ctx.timeline:
        lines.append(f"Timeline: {ctx.timeline}")
    if ctx.constraints:
        lines.append(f"Constraints: {', '.join(ctx.constraints)}")
    if ctx.priorities:
        lines.append(f"Priorities: {', '.join(ctx.priorities)}")
    if ctx.concerns:
        lines.append(f"Concerns: {', '.join(ctx.concerns)}")
    if ctx.target_users:
        lines.append(f"Target users: {ctx.target_users}")
    return "\n".join(lines)


def _format_message(message: Message) -> str:
    if isinstance(message, UserMessage):
        return f"User: {message.text}"
    if isinstance(message, OrchestratorMessage):
        return f"Orchestrator: {message.text}"
    if isinstance(message, ExpertMessage):
        return f"{message.speaker}: {message.text}"
    return f"[{message.speaker}] {message.text}"


def _transcript(messages: list[Message] | tuple[Message, ...], window: int = TRANSCRIPT_WINDOW) -> str:
    recent = list(messages)[-window:]
    if not recent:
        return "(no conversation yet)"
    return "\n".join(_format_message(m) for m in recent)


class DefaultPromptBuilder:
    """Straightforward prompts: a role system prompt, the project context, and the ask."""

    ORCHESTRATOR_SYSTEM = (
        "You are the orchestrator of an expert advisory session. You guide the user "
        "through discovery, introduce the expert team and keep the discussion on track. "
        "Be warm, brief and specific. Ask at most one question per message."
    )

    ORCHESTRATOR_ASKS = {
        "initial_discovery": (
            "Welcome the user and ask one discovery question that helps choose the "
            "right experts for this project."
        ),
        "discovery_followup": (
            "Acknowledge what the user just said and ask one follow-up question about "
            "timeline, constraints, users or main concerns."
        ),
        "team_assembly": (
            "Announce the expert team below and explain in one or two sentences what "
            "each will contribute."
        ),
        "general": "Respond helpfully to the user's latest message in the current phase.",
    }

    def for_orchestrator(
        self, session: Session, response_type: str, user_text: str | None = None
    ) -> CacheablePrompt:
        ask = self.ORCHESTRATOR_ASKS.get(response_type, self.ORCHESTRATOR_ASKS["general"])
        parts = [f"Phase: {session.phase.value}", "Conversation so far:", _transcript(session.messages)]
        if session.selected_experts:
            parts.append(f"Expert team: {', '.join(session.selected_experts)}")
        if user_text:
            parts.append("Latest user message:\n" + wrap_user_content(user_text))
        parts.append(ask)
        return CacheablePrompt(
            system=self.ORCHESTRATOR_SYSTEM,
            context=_context_block(session),
            user_message="\n\n".join(parts),
        )

    def _expert_system(self, expert_name: str, focus: str) -> str:
        return (
            f"You are the {expert_name} on a small panel of software experts advising a "
            f"user on their project. Your focus: {focus}. Give concrete, opinionated "
            f"recommendations that name specific technologies. Keep it to two or three "
            f"sentences."
        )

    def for_expert(
        self, session: Session, expert_id: str, expert_name: str, focus: str, round_number: int
    ) -> CacheablePrompt:
        return CacheablePrompt(
            system=self._expert_system(expert_name, focus),
            context=_context_block(session),
            user_message=(
                f"Collaboration round {round_number}. Other experts on the panel: "
                f"{', '.join(e for e in session.selected_experts if e != expert_id)}.\n\n"
                f"Discussion so far:\n{_transcript(session.messages)}\n\n"
                f"Add your insight, building on or challenging what others said. If a "
                f"decision truly depends on the user, address them directly with one question."
            ),
        )

    def for_expert_reply(
        self, session: Session, expert_id: str, expert_name: str, focus: str, user_text: str
    ) -> CacheablePrompt:
        return CacheablePrompt(
            system=self._expert_system(expert_name, focus),
            context=_context_block(session),
            user_message=(
                f"The user answered the panel:\n{wrap_user_content(user_text)}\n\n"
                f"Acknowledge the answer briefly and say how it changes your recommendation."
            ),
        )

    def for_plan(
        self,
        session: Session,
        expert_id: str,
        expert_name: str,
        focus: str,
        discussion: list[ExpertMessage],
    ) -> CacheablePrompt:
        return CacheablePrompt(
            system=self._expert_system(expert_name, focus).replace(
                "Keep it to two or three sentences.", "Write in markdown."
            ),
            context=_context_block(session),
            user_message=(
                f"Panel discussion:\n{_transcript(discussion, window=len(discussion) or 1)}\n\n"
                f"Write your implementation plan as '## {expert_name} Implementation Plan' "
                f"with sections: Technology Approach, Key Features, Timeline, Risk Mitigation."
            ),
        )

    def for_synthesis(self, session: Session, plans: list[Plan]) -> CacheablePrompt:
        plan_text = "\n\n".join(f"[{p.expert_id}]\n{p.content}" for p in plans)
        messages = session.messages
        return CacheablePrompt(
            system=(
                "You are the lead architect consolidating an expert panel's plans into "
                "one unified recommendation. Resolve disagreements explicitly and keep "
                "every concrete technology decision."
            ),
            context=_context_block(session),
            user_message=(
                f"Full session transcript:\n{_transcript(messages, window=len(messages) or 1)}\n\n"
                f"Expert plans:\n{plan_text}\n\n"
                f"Write the unified recommendation in markdown. End with a section that "
                f"starts with the line '{IMPLEMENTATION_MARKER}:' followed by a single "
                f"paragraph of step-by-step instructions a developer could follow to build it."
            ),
        )
