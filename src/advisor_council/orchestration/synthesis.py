"""
SynthesisStage -- unify every expert plan into one recommendation.

One generation call with its own retry and deadline envelope. The derived
instruction text is the block under the implementation marker in the generated
text, or a locally composed instruction when the model did not include one.

When both backends are unavailable the stage composes the whole synthesis
locally from technologies the experts actually named during collaboration.
Nothing is invented: a technology appears only if some expert message names it.
"""

import logging
import re

from ..config import CouncilConfig
from ..errors import BothServicesUnavailable
from ..harness.session import (
    ExpertMessage,
    Phase,
    Plan,
    Session,
    SourceTag,
    Synthesis,
    UserMessage,
)
from ..llm.generator import TextGenerator
from ..llm.prompts import PromptBuilder
from .expert_panel import ExpertPanel
from .keywords import KeywordTables, contains_word
from .retry import RetryExecutor

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_HEADING_NOISE = "#>*_ \t"

DEFAULT_PRIORITIES = [
    "Start with core functionality",
    "Implement user authentication",
    "Build the data models",
]

NEXT_STEPS = [
    "Set up the development environment with the recommended stack",
    "Initialize the project structure",
    "Implement core features following the expert recommendations",
    "Deploy using the suggested architecture patterns",
]


def first_sentence(text: str) -> str:
    text = " ".join(text.split())
    return _SENTENCE_END.split(text, maxsplit=1)[0] if text else ""


def extract_technologies(
    messages: list[ExpertMessage], keywords: KeywordTables
) -> dict[str, list[str]]:
    """Technology names per group, limited to those the messages mention."""
    found: dict[str, list[str]] = {}
    for group, techs in keywords.tech_groups.items():
        hits = [
            display
            for display, words in techs.items()
            if any(contains_word(m.text, w) for m in messages for w in words)
        ]
        if hits:
            found[group] = hits
    return found


def extract_instructions(content: str, marker: str) -> str | None:
    """Text following the marker heading, up to the next blank line."""
    lines = content.splitlines()
    for i, line in enumerate(lines):
        cleaned = line.strip(_HEADING_NOISE)
        if not cleaned.upper().startswith(marker.upper()):
            continue
        rest = cleaned[len(marker):].strip(_HEADING_NOISE + ":")
        block = [rest] if rest else []
        for following in lines[i + 1:]:
            if not following.strip():
                if block:
                    break
                continue
            block.append(following.strip())
        text = "\n".join(block).strip()
        return text or None
    return None


class SynthesisStage:
    def __init__(
        self,
        generator: TextGenerator,
        prompts: PromptBuilder,
        panel: ExpertPanel,
        retry: RetryExecutor,
        keywords: KeywordTables,
        config: CouncilConfig,
    ):
        self._generator = generator
        self._prompts = prompts
        self._panel = panel
        self._retry = retry
        self._keywords = keywords
        self._config = config

    async def run(self, session: Session, plans: list[Plan]) -> Synthesis:
        logger.info(f"[Synthesis] {session.id}: synthesizing {len(plans)} plans")
        prompt = self._prompts.for_synthesis(session, plans)
        try:
            content = await self._retry.run(
                lambda: self._generator.complete(prompt, timeout=self._config.timeouts.synthesis),
                max_attempts=self._config.retry.synthesis_attempts,
                base_delay=self._config.retry.synthesis_base_delay,
                label=f"{session.id}/synthesis",
            )
        except BothServicesUnavailable as e:
            logger.error(
                f"[Synthesis] {session.id} phase={session.phase.value}: "
                f"both services unavailable, composing local synthesis ({e})"
            )
            return self.local_synthesis(session, plans)

        instructions = extract_instructions(content, self._keywords.implementation_marker)
        if instructions is None:
            instructions = self.build_instructions(session)
        return Synthesis(
            content=content,
            derived_instruction_text=instructions,
            plan_count=len(plans),
        )

    def _insights(self, session: Session) -> list[tuple[str, str]]:
        """(expert name, first sentence of their first collaboration message)."""
        seen: dict[str, str] = {}
        for message in session.expert_messages(Phase.COLLABORATION):
            if message.expert_id not in seen:
                seen[message.expert_id] = first_sentence(message.text)
        return [(self._panel.display_name(e), s) for e, s in seen.items() if s]

    def build_instructions(self, session: Session) -> str:
        ctx = session.context
        description = ctx.project_description or "software project"
        sections = [f"Build a {description} with the following specifications:"]

        insights = self._insights(session)
        if insights:
            sections.append(
                "## Expert Recommendations\n"
                + "\n".join(f"- {name}: {sentence}" for name, sentence in insights)
            )

        user_lines = [
            m.text for m in session.messages if isinstance(m, UserMessage)
        ][1:]
        if user_lines:
            sections.append(
                "## User Requirements\n" + "\n".join(f"- {line}" for line in user_lines)
            )

        requirements = []
        if ctx.timeline:
            requirements.append(f"- Timeline: {ctx.timeline}")
        if ctx.constraints:
            requirements.append(f"- Constraints: {', '.join(ctx.constraints)}")
        if ctx.priorities:
            requirements.append(f"- Priorities: {', '.join(ctx.priorities)}")
        if ctx.target_users:
            requirements.append(f"- Target users: {ctx.target_users}")
        if requirements:
            sections.append("## Implementation Requirements\n" + "\n".join(requirements))

        techs = extract_technologies(session.expert_messages(Phase.COLLABORATION), self._keywords)
        if techs:
            sections.append(
                "## Technical Architecture\n"
                + "\n".join(f"- {group}: {', '.join(names)}" for group, names in techs.items())
            )

        sections.append(
            "## Development Approach\n"
            + "\n".join(f"{i}. {step}" for i, step in enumerate(NEXT_STEPS, start=1))
        )
        return "\n\n".join(sections)

    def local_synthesis(self, session: Session, plans: list[Plan]) -> Synthesis:
        ctx = session.context
        techs = extract_technologies(session.expert_messages(Phase.COLLABORATION), self._keywords)

        parts = [
            "## Expert Team Synthesis",
            f'Your {len(session.selected_experts)} expert team has analyzed '
            f'"{ctx.project_description}" and provided specific technical recommendations.',
        ]
        for group, names in techs.items():
            parts.append(f"### {group}\n" + "\n".join(f"- {n}" for n in names))

        insights = self._insights(session)
        if insights:
            parts.append(
                "### Expert Insights\n"
                + "\n".join(f"- **{name}**: {sentence}" for name, sentence in insights)
            )

        priorities = ctx.priorities or DEFAULT_PRIORITIES
        parts.append("### Implementation Priorities\n" + "\n".join(f"- {p}" for p in priorities))
        parts.append(
            "### Next Steps\n"
            + "\n".join(f"{i}. {step}" for i, step in enumerate(NEXT_STEPS, start=1))
        )

        return Synthesis(
            content="\n\n".join(parts),
            derived_instruction_text=self.build_instructions(session),
            source_tag=SourceTag.FALLBACK,
            plan_count=len(plans),
        )
