"""
Session events -- a closed set of typed events and the bus that delivers them.

Every phase change and every phase-local output is published as one event.
Consumers either register a synchronous listener or open an async
subscription (an unbounded queue per subscriber, optionally filtered to one
session). The engine never knows which transport sits on the other side.

Example:
    bus = EventBus()
    sub = bus.subscribe(session_id)
    async for event in sub:
        print(event.event_type, event_to_dict(event))
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Union

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now().isoformat()


# =============================================================================
# EVENT TYPES
# =============================================================================


@dataclass(frozen=True)
class PhaseChanged:
    session_id: str
    previous: str
    phase: str
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "phase-change"


@dataclass(frozen=True)
class OrchestratorSpoke:
    session_id: str
    text: str
    phase: str
    source_tag: str = "generated"
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "orchestrator-message"


@dataclass(frozen=True)
class UserSpoke:
    session_id: str
    text: str
    phase: str
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "user-message"


@dataclass(frozen=True)
class ExpertSpoke:
    session_id: str
    expert_id: str
    speaker: str
    text: str
    phase: str
    round: int | None = None
    source_tag: str = "generated"
    responding_to_user: bool = False
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "expert-message"


@dataclass(frozen=True)
class ExpertThinking:
    session_id: str
    expert_id: str
    speaker: str
    round: int
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "expert-thinking"


@dataclass(frozen=True)
class UserInputRequested:
    session_id: str
    expert_id: str
    question: str
    round: int
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "user-input-requested"


@dataclass(frozen=True)
class ExpertPlanned:
    session_id: str
    expert_id: str
    speaker: str
    content: str
    source_tag: str = "generated"
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "expert-plan"


@dataclass(frozen=True)
class SynthesisCompleted:
    session_id: str
    content: str
    derived_instruction_text: str
    source_tag: str = "generated"
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "synthesis-complete"


@dataclass(frozen=True)
class StreamChunk:
    session_id: str
    chunk: str
    index: int
    final: bool = False
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "stream-chunk"


@dataclass(frozen=True)
class StreamError:
    session_id: str
    error: str
    phase: str
    timestamp: str = field(default_factory=_now_iso)
    event_type: ClassVar[str] = "stream-error"


SessionEvent = Union[
    PhaseChanged,
    OrchestratorSpoke,
    UserSpoke,
    ExpertSpoke,
    ExpertThinking,
    UserInputRequested,
    ExpertPlanned,
    SynthesisCompleted,
    StreamChunk,
    StreamError,
]

EVENT_TYPES = (
    PhaseChanged,
    OrchestratorSpoke,
    UserSpoke,
    ExpertSpoke,
    ExpertThinking,
    UserInputRequested,
    ExpertPlanned,
    SynthesisCompleted,
    StreamChunk,
    StreamError,
)


def event_to_dict(event: SessionEvent) -> dict[str, Any]:
    if not isinstance(event, EVENT_TYPES):
        raise TypeError(f"Unknown event type: {type(event).__name__}")
    data = asdict(event)
    data["event_type"] = event.event_type
    return data


# =============================================================================
# BUS
# =============================================================================

Listener = Callable[[SessionEvent], None]

_CLOSED = object()


class Subscription:
    """Async iterator over events for one subscriber."""

    def __init__(self, bus: "EventBus", session_id: str | None):
        self.session_id = session_id
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def matches(self, event: SessionEvent) -> bool:
        return self.session_id is None or event.session_id == self.session_id

    def deliver(self, event: SessionEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> SessionEvent | None:
        """Next event, or None once the subscription is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def pending(self) -> list[SessionEvent]:
        """Drain events already queued without waiting."""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                break
            items.append(item)
        return items

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SessionEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """Fan-out of session events to listeners and subscriptions."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a synchronous callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self, session_id: str | None = None) -> Subscription:
        sub = Subscription(self, session_id)
        self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def close_session(self, session_id: str) -> None:
        """End every subscription bound to one session."""
        for sub in list(self._subscriptions):
            if sub.session_id == session_id:
                sub.close()

    def publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"[EventBus] Listener failed on {event.event_type} "
                    f"for {event.session_id}: {e}",
                    exc_info=True,
                )
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub.deliver(event)
