"""
SessionStateMachine -- owns every session and drives it through the phases.

  DISCOVERY      user turns enrich the context until the readiness predicate holds
  TEAM_ASSEMBLY  the expert panel is selected and fixed
  COLLABORATION  1..N concurrent rounds (early exit on consensus, pause on questions)
  PLANNING       one plan per expert
  SYNTHESIS      one unified recommendation
  COMPLETE       terminal; the session goes inactive

Exposed operations: start(), submit_user_message(), stop(), get_session().
Everything after team assembly runs as a background task per session; drain()
awaits it. All session writes happen here, on the event loop, between awaits.

Usage:
    machine = create_state_machine()
    started = await machine.start("user-1", "A marketplace for local artists")
    turn = await machine.submit_user_message(started.session_id, "Launch in 3 months")
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable

from ..config import CouncilConfig, load_config
from ..errors import GenerationError, SessionNotFound
from ..harness.session import (
    ExpertMessage,
    Message,
    OrchestratorMessage,
    Phase,
    Session,
    SessionOptions,
    SourceTag,
    SystemMessage,
    UserContext,
    UserMessage,
)
from ..llm.generator import TextGenerator
from ..llm.prompts import DefaultPromptBuilder, PromptBuilder
from ..security.prompt_guard import flag_injection
from ..security.validators import validate_length, validate_not_empty
from . import fallbacks
from .collaboration import CollaborationRound
from .discovery import detect_project_type, extract_facts, is_ready
from .events import (
    EventBus,
    ExpertPlanned,
    ExpertSpoke,
    OrchestratorSpoke,
    PhaseChanged,
    SessionEvent,
    StreamChunk,
    StreamError,
    SynthesisCompleted,
    UserInputRequested,
    UserSpoke,
)
from .expert_panel import ExpertPanel
from .keywords import KeywordTables, load_keyword_tables
from .pacing import Clock, Pacer, SystemClock
from .planning import PlanningStage
from .retry import RetryExecutor
from .synthesis import SynthesisStage

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 10_000
STREAM_CHUNK_WORDS = 5


@dataclass
class StartResult:
    session_id: str
    first_message: str
    phase: Phase


@dataclass
class TurnResult:
    session_id: str
    phase: Phase
    status: str
    reply: str | None = None
    selected_experts: tuple[str, ...] = field(default_factory=tuple)


class SessionStateMachine:
    """Drives sessions through the advisory phases. Construct once per process."""

    def __init__(
        self,
        generator: TextGenerator,
        prompts: PromptBuilder | None = None,
        panel: ExpertPanel | None = None,
        retry: RetryExecutor | None = None,
        events: EventBus | None = None,
        config: CouncilConfig | None = None,
        clock: Clock | None = None,
        keywords: KeywordTables | None = None,
    ):
        self.config = config or CouncilConfig()
        self.keywords = keywords or load_keyword_tables(self.config.keywords_path)
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self.generator = generator
        self.prompts = prompts or DefaultPromptBuilder()
        self.panel = panel or ExpertPanel(self.keywords, self.config.rounds.max_experts)
        self.retry = retry or RetryExecutor(
            sleep=self.clock.sleep, max_jitter=self.config.retry.max_jitter
        )
        self.pacer = Pacer(self.clock, self.config.pacing)

        self._collaboration = CollaborationRound(
            self.generator, self.prompts, self.panel, self.retry,
            self.keywords, self.events, self.config,
        )
        self._planning = PlanningStage(
            self.generator, self.prompts, self.panel, self.retry, self.config
        )
        self._synthesis = SynthesisStage(
            self.generator, self.prompts, self.panel, self.retry, self.keywords, self.config
        )

        self._sessions: dict[str, Session] = {}
        self._pipelines: dict[str, asyncio.Task] = {}
        self._eviction_task: asyncio.Task | None = None

    # =========================================================================
    # EXPOSED OPERATIONS
    # =========================================================================

    async def start(
        self,
        user_id: str,
        initial_text: str,
        options: SessionOptions | None = None,
    ) -> StartResult:
        """Open a session in Discovery and return the orchestrator's opener."""
        text = validate_not_empty(initial_text, "initial_text")
        validate_length(text, "initial_text", max_length=MAX_MESSAGE_LENGTH)
        user_id = validate_not_empty(user_id, "user_id")

        now = self.clock.now()
        session = Session(
            id=f"session-{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            started_at=now,
            context=UserContext(project_description=text),
            options=options or SessionOptions(),
            now=self.clock.now,
        )
        self._sessions[session.id] = session
        logger.info(f"[SessionStateMachine] {session.id}: started for {user_id}")

        flag_injection(text, session.id)
        self._record(session, UserMessage(text=text, phase=session.phase))
        extract_facts(session.context, text, self.keywords)

        opener = await self._orchestrator_say(session, "initial_discovery")
        return StartResult(session_id=session.id, first_message=opener, phase=session.phase)

    async def submit_user_message(self, session_id: str, text: str) -> TurnResult:
        """Route one user message according to the session's current phase."""
        session = self._require(session_id)
        text = validate_not_empty(text, "text")
        validate_length(text, "text", max_length=MAX_MESSAGE_LENGTH)

        flag_injection(text, session_id)

        round_number = session.current_round if session.phase == Phase.COLLABORATION else None
        self._record(session, UserMessage(text=text, phase=session.phase, round=round_number))
        extract_facts(session.context, text, self.keywords)

        if session.phase == Phase.DISCOVERY:
            return await self._handle_discovery(session)
        if session.phase == Phase.COLLABORATION and session.awaiting_user:
            return await self._handle_collaboration_reply(session, text)
        if session.phase in (Phase.TEAM_ASSEMBLY, Phase.COLLABORATION):
            return self._result(session, "user_input_recorded")
        if session.phase in (Phase.PLANNING, Phase.SYNTHESIS):
            reply = await self._orchestrator_say(session, "general", user_text=text)
            return self._result(session, "general_response", reply)
        raise SessionNotFound(session_id)

    def stop(self, session_id: str) -> bool:
        """Mark a session inactive. In-flight results arriving later are discarded."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.deactivate()
        self.events.close_session(session_id)
        logger.info(f"[SessionStateMachine] {session_id}: stopped in {session.phase.value}")
        return True

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    async def drain(self, session_id: str) -> None:
        """Wait for the session's background pipeline, if any, to finish."""
        while True:
            task = self._pipelines.get(session_id)
            if task is None:
                return
            await task
            if self._pipelines.get(session_id) is task:
                return

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Drop sessions idle longer than the configured horizon."""
        now = self.clock.now() if now is None else now
        horizon = self.config.session_horizon
        expired = [
            sid for sid, s in self._sessions.items() if now - s.last_activity > horizon
        ]
        for sid in expired:
            session = self._sessions.pop(sid)
            session.deactivate()
            self._pipelines.pop(sid, None)
            self.events.close_session(sid)
        if expired:
            logger.info(f"[SessionStateMachine] Evicted {len(expired)} idle sessions")
        return expired

    def start_eviction_loop(self, interval: float | None = None) -> asyncio.Task:
        interval = interval or self.config.eviction_interval
        if self._eviction_task is None or self._eviction_task.done():
            self._eviction_task = asyncio.create_task(self._eviction_loop(interval))
        return self._eviction_task

    async def _eviction_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.evict_idle()
            except Exception as e:
                logger.error(f"[SessionStateMachine] Eviction failed: {e}", exc_info=True)

    async def aclose(self) -> None:
        """Cancel the eviction loop and every running pipeline."""
        tasks = [t for t in self._pipelines.values() if not t.done()]
        if self._eviction_task is not None:
            tasks.append(self._eviction_task)
            self._eviction_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pipelines.clear()

    # =========================================================================
    # PHASE HANDLERS
    # =========================================================================

    async def _handle_discovery(self, session: Session) -> TurnResult:
        if not is_ready(session):
            reply = await self._orchestrator_say(session, "discovery_followup")
            return self._result(session, "discovery_continued", reply)

        await self.pacer.pause("discovery_to_assembly")
        if session.phase != Phase.DISCOVERY or not self._transition(session, Phase.TEAM_ASSEMBLY):
            return self._result(session, "user_input_recorded")

        decision = self.panel.route(session.context, session.options.max_experts)
        session.fix_team(decision.experts)
        names = [self.panel.display_name(e) for e in decision.experts]
        self._record(session, SystemMessage(
            text=f"Expert team: {', '.join(names)}", phase=session.phase
        ))
        logger.info(
            f"[SessionStateMachine] {session.id}: team {list(decision.experts)} "
            f"({decision.reasons})"
        )

        reply = await self._orchestrator_say(session, "team_assembly")
        self._schedule(session, self._run_from_assembly(session))
        return self._result(session, "team_assembled", reply)

    async def _handle_collaboration_reply(self, session: Session, text: str) -> TurnResult:
        session.awaiting_user = False
        responders = session.selected_experts[: self.config.rounds.reply_experts]
        for index, expert_id in enumerate(responders):
            if index:
                await self.pacer.pause("reply_pause")
            entry = await self._expert_reply(session, expert_id, text)
            self._record(session, entry)

        contributed = len(session.expert_messages(Phase.COLLABORATION))
        cap = len(session.selected_experts) * self.config.rounds.messages_per_expert_cap
        if contributed < cap:
            next_round = session.current_round + 1
            last_round = max(self._max_rounds(session), next_round)
            self._schedule(session, self._run_rounds_then_finish(session, next_round, last_round))
        else:
            logger.info(
                f"[SessionStateMachine] {session.id}: {contributed} expert messages, "
                f"moving to planning"
            )
            self._schedule(session, self._finish(session))
        return self._result(session, "user_response_processed")

    async def _expert_reply(self, session: Session, expert_id: str, text: str) -> ExpertMessage:
        profile = self.panel.profile(expert_id)
        prompt = self.prompts.for_expert_reply(session, expert_id, profile.name, profile.focus, text)
        source = SourceTag.GENERATED
        try:
            reply = await self.retry.run(
                lambda: self.generator.complete(prompt, timeout=self.config.timeouts.expert_reply),
                max_attempts=self.config.retry.expert_attempts,
                base_delay=self.config.retry.expert_base_delay,
                label=f"{session.id}/{expert_id}/reply",
            )
        except GenerationError as e:
            logger.error(
                f"[SessionStateMachine] {session.id} phase={session.phase.value} "
                f"expert={expert_id}: reply failed, using acknowledgement ({e})"
            )
            reply = fallbacks.expert_acknowledgement(profile.name)
            source = SourceTag.FALLBACK
        return ExpertMessage(
            text=reply,
            phase=Phase.COLLABORATION,
            expert_id=expert_id,
            speaker=profile.name,
            round=session.current_round,
            source_tag=source,
            responding_to_user=True,
        )

    # =========================================================================
    # BACKGROUND PIPELINE
    # =========================================================================

    def _schedule(self, session: Session, coro: Awaitable[Any]) -> None:
        self._pipelines[session.id] = asyncio.create_task(self._guarded(session, coro))

    async def _guarded(self, session: Session, coro: Awaitable[Any]) -> None:
        """Run a pipeline step. An unexpected failure ends the session instead of
        escaping into an unobserved task."""
        try:
            await coro
        except Exception as e:
            logger.error(
                f"[SessionStateMachine] {session.id}: pipeline failed in "
                f"{session.phase.value}: {e}",
                exc_info=True,
            )
            self.events.publish(StreamError(
                session_id=session.id, error=str(e), phase=session.phase.value
            ))
            session.deactivate()
            self.events.close_session(session.id)

    async def _run_from_assembly(self, session: Session) -> None:
        await self.pacer.pause("assembly_to_collaboration")
        if not self._transition(session, Phase.COLLABORATION):
            return
        await self._run_rounds_then_finish(session, 1, self._max_rounds(session))

    async def _run_rounds_then_finish(self, session: Session, first: int, last: int) -> None:
        if await self._collaborate(session, first, last):
            await self._finish(session)

    async def _collaborate(self, session: Session, first: int, last: int) -> bool:
        """Run rounds first..last. False when suspended for the user or the session ended."""
        if not session.moderation_shown:
            session.moderation_shown = True
            await self.pacer.pause("moderation_pause")
            self._record(session, OrchestratorMessage(
                text=fallbacks.MODERATION_MESSAGE, phase=session.phase
            ))

        round_number = first
        while round_number <= last:
            if not session.active:
                return False
            session.current_round = round_number
            outcome = await self._collaboration.run(session, round_number)
            if not session.active:
                logger.info(
                    f"[SessionStateMachine] {session.id}: discarded round {round_number} "
                    f"results (session inactive)"
                )
                return False

            for entry in outcome.entries:
                self._record(session, entry)

            if outcome.question_from and session.options.include_user_in_collaboration:
                session.awaiting_user = True
                self.events.publish(UserInputRequested(
                    session_id=session.id,
                    expert_id=outcome.question_from,
                    question=outcome.question or "",
                    round=round_number,
                ))
                logger.info(
                    f"[SessionStateMachine] {session.id}: round {round_number} waiting "
                    f"for user (asked by {outcome.question_from})"
                )
                return False

            if outcome.consensus and round_number < last:
                self._record(session, OrchestratorMessage(
                    text=f"{fallbacks.orchestrator_message('consensus', '')} "
                         f"(shared direction: {outcome.consensus_category})",
                    phase=session.phase,
                    round=round_number,
                ))
                logger.info(
                    f"[SessionStateMachine] {session.id}: consensus on "
                    f"{outcome.consensus_category} after round {round_number}"
                )
                break

            if round_number < last:
                await self.pacer.pause("round_pause")
            round_number += 1
        return True

    async def _finish(self, session: Session) -> None:
        """Planning, then synthesis, then Complete."""
        await self.pacer.pause("pre_planning_pause")
        self._record(session, OrchestratorMessage(
            text=fallbacks.PLANNING_PROMPT_MESSAGE, phase=session.phase
        ))
        await self.pacer.pause("planning_prompt_pause")
        if not self._transition(session, Phase.PLANNING):
            return

        plans = await self._planning.run(session)
        for plan in plans:
            if session.add_plan(plan):
                self.events.publish(ExpertPlanned(
                    session_id=session.id,
                    expert_id=plan.expert_id,
                    speaker=self.panel.display_name(plan.expert_id),
                    content=plan.content,
                    source_tag=plan.source_tag.value,
                ))
        if not session.active:
            return

        await self.pacer.pause("planning_to_synthesis")
        if not self._transition(session, Phase.SYNTHESIS):
            return

        synthesis = await self._synthesis.run(session, list(session.expert_plans))
        if not session.set_synthesis(synthesis):
            return
        self.events.publish(SynthesisCompleted(
            session_id=session.id,
            content=synthesis.content,
            derived_instruction_text=synthesis.derived_instruction_text,
            source_tag=synthesis.source_tag.value,
        ))

        self._transition(session, Phase.COMPLETE)
        session.deactivate()
        logger.info(f"[SessionStateMachine] {session.id}: complete ({synthesis.source_tag.value})")
        self.events.close_session(session.id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None or not session.active:
            raise SessionNotFound(session_id)
        return session

    def _max_rounds(self, session: Session) -> int:
        return session.options.max_rounds or self.config.rounds.max_rounds

    def _result(self, session: Session, status: str, reply: str | None = None) -> TurnResult:
        return TurnResult(
            session_id=session.id,
            phase=session.phase,
            status=status,
            reply=reply,
            selected_experts=session.selected_experts,
        )

    def _transition(self, session: Session, target: Phase) -> bool:
        previous = session.phase
        if not session.advance(target):
            return False
        session.touch(self.clock.now())
        self.events.publish(PhaseChanged(
            session_id=session.id, previous=previous.value, phase=target.value
        ))
        logger.info(f"[SessionStateMachine] {session.id}: {previous.value} -> {target.value}")
        return True

    def _record(self, session: Session, message: Message) -> bool:
        if not session.record(message):
            return False
        session.touch(self.clock.now())
        event = self._event_for(session, message)
        if event is not None:
            self.events.publish(event)
        return True

    @staticmethod
    def _event_for(session: Session, message: Message) -> SessionEvent | None:
        if isinstance(message, UserMessage):
            return UserSpoke(session_id=session.id, text=message.text, phase=message.phase.value)
        if isinstance(message, OrchestratorMessage):
            return OrchestratorSpoke(
                session_id=session.id,
                text=message.text,
                phase=message.phase.value,
                source_tag=message.source_tag.value,
            )
        if isinstance(message, ExpertMessage):
            return ExpertSpoke(
                session_id=session.id,
                expert_id=message.expert_id,
                speaker=message.speaker,
                text=message.text,
                phase=message.phase.value,
                round=message.round,
                source_tag=message.source_tag.value,
                responding_to_user=message.responding_to_user,
            )
        if isinstance(message, SystemMessage):
            return None
        raise TypeError(f"Unknown message type: {type(message).__name__}")

    async def _orchestrator_say(
        self, session: Session, response_type: str, user_text: str | None = None
    ) -> str:
        """Generate, stream if requested, record and publish one orchestrator message."""
        prompt = self.prompts.for_orchestrator(session, response_type, user_text)
        source = SourceTag.GENERATED
        try:
            text = await self.retry.run(
                lambda: self.generator.complete(prompt, timeout=self.config.timeouts.orchestrator),
                max_attempts=self.config.retry.orchestrator_attempts,
                base_delay=self.config.retry.orchestrator_base_delay,
                label=f"{session.id}/orchestrator/{response_type}",
            )
        except GenerationError as e:
            logger.error(
                f"[SessionStateMachine] {session.id} phase={session.phase.value}: "
                f"orchestrator {response_type} failed, using fallback ({e})"
            )
            self.events.publish(StreamError(
                session_id=session.id, error=str(e), phase=session.phase.value
            ))
            project_type = detect_project_type(session.context.project_description, self.keywords)
            names = [self.panel.display_name(x) for x in session.selected_experts]
            text = fallbacks.orchestrator_message(response_type, project_type, names or None)
            source = SourceTag.FALLBACK

        if session.options.streaming and session.active:
            await self._stream(session, text)
        self._record(session, OrchestratorMessage(text=text, phase=session.phase, source_tag=source))
        return text

    async def _stream(self, session: Session, text: str) -> None:
        words = text.split()
        chunks = [
            " ".join(words[i:i + STREAM_CHUNK_WORDS])
            for i in range(0, len(words), STREAM_CHUNK_WORDS)
        ]
        for index, chunk in enumerate(chunks):
            if index:
                await self.pacer.pause("stream_chunk_delay")
            self.events.publish(StreamChunk(
                session_id=session.id,
                chunk=chunk,
                index=index,
                final=index == len(chunks) - 1,
            ))


def create_state_machine(
    config: CouncilConfig | None = None,
    generator: TextGenerator | None = None,
    events: EventBus | None = None,
    clock: Clock | None = None,
) -> SessionStateMachine:
    """Wire a state machine with default collaborators and env-driven config."""
    from ..llm.generator import create_generator

    config = config or load_config()
    keywords = load_keyword_tables(config.keywords_path)
    return SessionStateMachine(
        generator=generator or create_generator(config, keywords=keywords),
        events=events,
        config=config,
        keywords=keywords,
        clock=clock,
    )
