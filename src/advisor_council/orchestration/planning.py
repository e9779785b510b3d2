"""
PlanningStage -- one implementation plan per selected expert, in parallel.

Each plan prompt carries the Collaboration-phase discussion and the user
context. Calls are retried independently; an exhausted expert gets a templated
plan and the others are unaffected. Plans come back in selection order once
every call has settled.
"""

import asyncio
import logging

from ..config import CouncilConfig
from ..errors import GenerationError
from ..harness.session import Phase, Plan, Session, SourceTag
from ..llm.generator import TextGenerator
from ..llm.prompts import PromptBuilder
from . import fallbacks
from .expert_panel import ExpertPanel
from .retry import RetryExecutor

logger = logging.getLogger(__name__)


class PlanningStage:
    def __init__(
        self,
        generator: TextGenerator,
        prompts: PromptBuilder,
        panel: ExpertPanel,
        retry: RetryExecutor,
        config: CouncilConfig,
    ):
        self._generator = generator
        self._prompts = prompts
        self._panel = panel
        self._retry = retry
        self._config = config

    async def run(self, session: Session) -> list[Plan]:
        experts = list(session.selected_experts)
        logger.info(f"[Planning] {session.id}: requesting {len(experts)} plans")

        results = await asyncio.gather(
            *[self._plan_for(session, expert_id) for expert_id in experts],
            return_exceptions=True,
        )

        plans: list[Plan] = []
        for expert_id, result in zip(experts, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[Planning] {session.id}: {expert_id} failed unexpectedly: "
                    f"{type(result).__name__}: {result}"
                )
                result = self._fallback(session, expert_id)
            plans.append(result)
        return plans

    async def _plan_for(self, session: Session, expert_id: str) -> Plan:
        profile = self._panel.profile(expert_id)
        discussion = session.expert_messages(Phase.COLLABORATION)
        prompt = self._prompts.for_plan(session, expert_id, profile.name, profile.focus, discussion)
        try:
            content = await self._retry.run(
                lambda: self._generator.complete(prompt, timeout=self._config.timeouts.plan),
                max_attempts=self._config.retry.plan_attempts,
                base_delay=self._config.retry.plan_base_delay,
                label=f"{session.id}/{expert_id}/plan",
            )
        except GenerationError as e:
            logger.error(
                f"[Planning] {session.id} phase={session.phase.value} expert={expert_id}: "
                f"retries exhausted, using fallback plan ({e})"
            )
            return self._fallback(session, expert_id)
        return Plan(expert_id=expert_id, content=content)

    def _fallback(self, session: Session, expert_id: str) -> Plan:
        return Plan(
            expert_id=expert_id,
            content=fallbacks.expert_plan(
                self._panel.display_name(expert_id), expert_id, session.context
            ),
            source_tag=SourceTag.FALLBACK,
        )
