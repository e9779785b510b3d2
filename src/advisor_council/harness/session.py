"""
Session data model -- phases, the message log, user context, plans, synthesis.

  Message   -- one immutable transcript entry (a closed union of four kinds)
  UserContext -- facts discovered from user turns (append-only)
  Session   -- the durable container a SessionStateMachine owns and mutates

Write rules enforced here:
  - phases advance one step at a time, never backwards, never twice
  - selected_experts is fixed once
  - the message log only grows
  - an inactive session discards every write
  - unstamped messages, plans and the synthesis take their time from Session.now
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Union

from ..errors import PhaseTransitionError

logger = logging.getLogger(__name__)


# =============================================================================
# PHASES AND TAGS
# =============================================================================


class Phase(str, Enum):
    DISCOVERY = "discovery"
    TEAM_ASSEMBLY = "team-assembly"
    COLLABORATION = "collaboration"
    PLANNING = "planning"
    SYNTHESIS = "synthesis"
    COMPLETE = "complete"


PHASE_ORDER = [
    Phase.DISCOVERY,
    Phase.TEAM_ASSEMBLY,
    Phase.COLLABORATION,
    Phase.PLANNING,
    Phase.SYNTHESIS,
    Phase.COMPLETE,
]


class SourceTag(str, Enum):
    GENERATED = "generated"
    FALLBACK = "fallback"


def iso_timestamp(seconds: float) -> str:
    return datetime.fromtimestamp(seconds).isoformat()


# =============================================================================
# MESSAGES (closed union)
# =============================================================================


@dataclass(frozen=True)
class UserMessage:
    text: str
    phase: Phase
    speaker: str = "User"
    round: int | None = None
    timestamp: str = ""
    kind: ClassVar[str] = "user"


@dataclass(frozen=True)
class OrchestratorMessage:
    text: str
    phase: Phase
    speaker: str = "Orchestrator"
    round: int | None = None
    source_tag: SourceTag = SourceTag.GENERATED
    timestamp: str = ""
    kind: ClassVar[str] = "orchestrator"


@dataclass(frozen=True)
class ExpertMessage:
    text: str
    phase: Phase
    expert_id: str
    speaker: str
    round: int | None = None
    source_tag: SourceTag = SourceTag.GENERATED
    responding_to_user: bool = False
    timestamp: str = ""
    kind: ClassVar[str] = "expert"


@dataclass(frozen=True)
class SystemMessage:
    text: str
    phase: Phase
    speaker: str = "System"
    round: int | None = None
    timestamp: str = ""
    kind: ClassVar[str] = "system"


Message = Union[UserMessage, OrchestratorMessage, ExpertMessage, SystemMessage]


def message_to_dict(message: Message) -> dict[str, Any]:
    """Serialize any message kind; unknown kinds are a programming error."""
    data: dict[str, Any] = {
        "kind": message.kind,
        "speaker": message.speaker,
        "text": message.text,
        "phase": message.phase.value,
        "round": message.round,
        "timestamp": message.timestamp,
    }
    if isinstance(message, ExpertMessage):
        data["expert_id"] = message.expert_id
        data["source_tag"] = message.source_tag.value
        data["responding_to_user"] = message.responding_to_user
    elif isinstance(message, OrchestratorMessage):
        data["source_tag"] = message.source_tag.value
    elif isinstance(message, (UserMessage, SystemMessage)):
        pass
    else:
        raise TypeError(f"Unknown message type: {type(message).__name__}")
    return data


# =============================================================================
# CONTEXT, PLANS, SYNTHESIS
# =============================================================================


@dataclass
class UserContext:
    """Facts gathered from the user. Lists only grow; single values are set once."""

    project_description: str = ""
    timeline: str | None = None
    constraints: list[str] = field(default_factory=list)
    priorities: list[str] = field(default_factory=list)
    concerns: list[str] = field(default_factory=list)
    target_users: str | None = None

    def add_constraint(self, fact: str) -> bool:
        return _append_unique(self.constraints, fact)

    def add_priority(self, fact: str) -> bool:
        return _append_unique(self.priorities, fact)

    def add_concern(self, fact: str) -> bool:
        return _append_unique(self.concerns, fact)

    def set_timeline(self, value: str) -> bool:
        if self.timeline is not None:
            return False
        self.timeline = value
        return True

    def set_target_users(self, value: str) -> bool:
        if self.target_users is not None:
            return False
        self.target_users = value
        return True

    @property
    def has_facts(self) -> bool:
        return bool(
            self.timeline or self.constraints or self.concerns or self.target_users
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_description": self.project_description,
            "timeline": self.timeline,
            "constraints": list(self.constraints),
            "priorities": list(self.priorities),
            "concerns": list(self.concerns),
            "target_users": self.target_users,
        }


def _append_unique(items: list[str], value: str) -> bool:
    if value in items:
        return False
    items.append(value)
    return True


@dataclass(frozen=True)
class Plan:
    expert_id: str
    content: str
    source_tag: SourceTag = SourceTag.GENERATED
    created_at: str = ""


@dataclass(frozen=True)
class Synthesis:
    content: str
    derived_instruction_text: str
    source_tag: SourceTag = SourceTag.GENERATED
    plan_count: int = 0
    created_at: str = ""


@dataclass
class SessionOptions:
    """Per-session knobs supplied at start()."""

    max_experts: int = 4
    include_user_in_collaboration: bool = True
    streaming: bool = False
    max_rounds: int | None = None


# =============================================================================
# SESSION
# =============================================================================


@dataclass
class Session:
    """One advisory conversation. Only a SessionStateMachine should mutate it."""

    id: str
    user_id: str
    started_at: float
    context: UserContext = field(default_factory=UserContext)
    options: SessionOptions = field(default_factory=SessionOptions)
    phase: Phase = Phase.DISCOVERY
    active: bool = True
    last_activity: float = 0.0
    current_round: int = 0
    awaiting_user: bool = False
    moderation_shown: bool = False
    _messages: list[Message] = field(default_factory=list, repr=False)
    _selected_experts: tuple[str, ...] = ()
    _plans: list[Plan] = field(default_factory=list, repr=False)
    _synthesis: Synthesis | None = None
    now: Callable[[], float] = field(default=time.time, repr=False, compare=False)

    def __post_init__(self):
        if not self.last_activity:
            self.last_activity = self.started_at

    # -- read views ----------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def selected_experts(self) -> tuple[str, ...]:
        return self._selected_experts

    @property
    def expert_plans(self) -> tuple[Plan, ...]:
        return tuple(self._plans)

    @property
    def synthesis(self) -> Synthesis | None:
        return self._synthesis

    @property
    def user_turns(self) -> int:
        return sum(1 for m in self._messages if isinstance(m, UserMessage))

    def expert_messages(self, phase: Phase | None = None) -> list[ExpertMessage]:
        return [
            m for m in self._messages
            if isinstance(m, ExpertMessage) and (phase is None or m.phase == phase)
        ]

    # -- writes --------------------------------------------------------------

    def _writable(self, what: str) -> bool:
        if not self.active:
            logger.info(f"[Session] {self.id}: discarded {what} (session inactive)")
            return False
        return True

    def touch(self, now: float) -> None:
        self.last_activity = max(self.last_activity, now)

    def _stamp(self, item: Any, attr: str) -> Any:
        """Fill an empty timestamp from the session clock."""
        if getattr(item, attr):
            return item
        return replace(item, **{attr: iso_timestamp(self.now())})

    def record(self, message: Message) -> bool:
        """Append to the log. Returns False if the session no longer accepts writes."""
        if not self._writable(f"{message.kind} message"):
            return False
        self._messages.append(self._stamp(message, "timestamp"))
        return True

    def fix_team(self, experts: tuple[str, ...] | list[str]) -> None:
        if self._selected_experts:
            raise PhaseTransitionError(f"Session {self.id}: expert team already fixed")
        if not experts:
            raise PhaseTransitionError(f"Session {self.id}: expert team cannot be empty")
        self._selected_experts = tuple(experts)

    def add_plan(self, plan: Plan) -> bool:
        if not self._writable(f"plan from {plan.expert_id}"):
            return False
        self._plans.append(self._stamp(plan, "created_at"))
        return True

    def set_synthesis(self, synthesis: Synthesis) -> bool:
        if self._synthesis is not None:
            raise PhaseTransitionError(f"Session {self.id}: synthesis already recorded")
        if not self._writable("synthesis"):
            return False
        self._synthesis = self._stamp(synthesis, "created_at")
        return True

    def advance(self, target: Phase) -> bool:
        """Move to the next phase. Skips, repeats and reversals raise."""
        current = PHASE_ORDER.index(self.phase)
        wanted = PHASE_ORDER.index(target)
        if wanted != current + 1:
            raise PhaseTransitionError(
                f"Session {self.id}: illegal transition {self.phase.value} -> {target.value}"
            )
        if not self._writable(f"transition to {target.value}"):
            return False
        self.phase = target
        return True

    def deactivate(self) -> None:
        self.active = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "phase": self.phase.value,
            "active": self.active,
            "started_at": self.started_at,
            "last_activity": self.last_activity,
            "current_round": self.current_round,
            "awaiting_user": self.awaiting_user,
            "context": self.context.to_dict(),
            "selected_experts": list(self._selected_experts),
            "messages": [message_to_dict(m) for m in self._messages],
            "expert_plans": [
                {
                    "expert_id": p.expert_id,
                    "content": p.content,
                    "source_tag": p.source_tag.value,
                    "created_at": p.created_at,
                }
                for p in self._plans
            ],
            "synthesis": (
                {
                    "content": self._synthesis.content,
                    "derived_instruction_text": self._synthesis.derived_instruction_text,
                    "source_tag": self._synthesis.source_tag.value,
                    "plan_count": self._synthesis.plan_count,
                    "created_at": self._synthesis.created_at,
                }
                if self._synthesis
                else None
            ),
        }
