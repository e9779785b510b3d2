"""
CollaborationRound -- one concurrent round of expert contributions.

  1. Announce every expert as thinking (no state change)
  2. Dispatch one generation per expert concurrently, each with its own retry
     envelope; exhausted retries become that expert's static fallback text
  3. Wait for every dispatch to settle before returning anything
  4. Return entries in selection order (the state machine appends them)
  5. Flag the first generated entry that addresses the user with a question
  6. Flag consensus when one technology category is named by enough experts

The round never aborts: every selected expert gets exactly one entry.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field

from ..config import CouncilConfig
from ..errors import GenerationError
from ..harness.session import ExpertMessage, Phase, Session, SourceTag
from ..llm.generator import TextGenerator
from ..llm.prompts import PromptBuilder
from . import fallbacks
from .events import EventBus, ExpertThinking
from .expert_panel import ExpertPanel
from .keywords import KeywordTables
from .retry import RetryExecutor

logger = logging.getLogger(__name__)

MIN_EXPERTS_FOR_CONSENSUS = 2


@dataclass
class RoundOutcome:
    """Everything one round produced, in selection order."""

    round: int
    entries: list[ExpertMessage] = field(default_factory=list)
    question_from: str | None = None
    question: str | None = None
    consensus: bool = False
    consensus_category: str | None = None

    @property
    def fallback_count(self) -> int:
        return sum(1 for e in self.entries if e.source_tag == SourceTag.FALLBACK)


class CollaborationRound:
    def __init__(
        self,
        generator: TextGenerator,
        prompts: PromptBuilder,
        panel: ExpertPanel,
        retry: RetryExecutor,
        keywords: KeywordTables,
        events: EventBus,
        config: CouncilConfig,
    ):
        self._generator = generator
        self._prompts = prompts
        self._panel = panel
        self._retry = retry
        self._keywords = keywords
        self._events = events
        self._config = config

    async def run(self, session: Session, round_number: int) -> RoundOutcome:
        experts = list(session.selected_experts)
        logger.info(
            f"[Collaboration] {session.id}: round {round_number} with {len(experts)} experts"
        )

        for expert_id in experts:
            self._events.publish(ExpertThinking(
                session_id=session.id,
                expert_id=expert_id,
                speaker=self._panel.display_name(expert_id),
                round=round_number,
            ))

        results = await asyncio.gather(
            *[self._consult(session, expert_id, round_number) for expert_id in experts],
            return_exceptions=True,
        )

        outcome = RoundOutcome(round=round_number)
        for expert_id, result in zip(experts, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[Collaboration] {session.id}: {expert_id} failed unexpectedly in "
                    f"round {round_number}: {type(result).__name__}: {result}"
                )
                result = self._fallback(session, expert_id, round_number)
            outcome.entries.append(result)

        for entry in outcome.entries:
            if entry.source_tag == SourceTag.GENERATED and self._keywords.has_question(entry.text):
                outcome.question_from = entry.expert_id
                outcome.question = entry.text
                break

        outcome.consensus_category = self.detect_consensus(outcome.entries)
        outcome.consensus = outcome.consensus_category is not None

        logger.info(
            f"[Collaboration] {session.id}: round {round_number} settled "
            f"({outcome.fallback_count} fallback, question_from={outcome.question_from}, "
            f"consensus={outcome.consensus_category})"
        )
        return outcome

    async def _consult(self, session: Session, expert_id: str, round_number: int) -> ExpertMessage:
        profile = self._panel.profile(expert_id)
        prompt = self._prompts.for_expert(
            session, expert_id, profile.name, profile.focus, round_number
        )
        timeouts = self._config.timeouts
        policy = self._config.retry
        try:
            text = await self._retry.run(
                lambda: self._generator.complete(prompt, timeout=timeouts.expert),
                max_attempts=policy.expert_attempts,
                base_delay=policy.expert_base_delay,
                label=f"{session.id}/{expert_id}/round-{round_number}",
            )
        except GenerationError as e:
            logger.error(
                f"[Collaboration] {session.id} phase={session.phase.value} "
                f"expert={expert_id}: retries exhausted, using fallback ({e})"
            )
            return self._fallback(session, expert_id, round_number)

        return ExpertMessage(
            text=text,
            phase=Phase.COLLABORATION,
            expert_id=expert_id,
            speaker=profile.name,
            round=round_number,
        )

    def _fallback(self, session: Session, expert_id: str, round_number: int) -> ExpertMessage:
        return ExpertMessage(
            text=fallbacks.expert_message(expert_id, round_number, session.context),
            phase=Phase.COLLABORATION,
            expert_id=expert_id,
            speaker=self._panel.display_name(expert_id),
            round=round_number,
            source_tag=SourceTag.FALLBACK,
        )

    def detect_consensus(self, entries: list[ExpertMessage]) -> str | None:
        """Category named by at least ceil(ratio * N) distinct experts, if any."""
        experts = {e.expert_id for e in entries}
        if len(experts) < MIN_EXPERTS_FOR_CONSENSUS:
            return None

        mentions: dict[str, set[str]] = {}
        for entry in entries:
            for category in self._keywords.categories_in(entry.text):
                mentions.setdefault(category, set()).add(entry.expert_id)

        threshold = math.ceil(round(self._config.rounds.consensus_ratio * len(experts), 9))
        for category in self._keywords.consensus_categories:
            if len(mentions.get(category, ())) >= threshold:
                return category
        return None
