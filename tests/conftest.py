"""Shared fixtures -- fake clock, scripted backends, state machine factory."""

import asyncio
import re

import pytest

from advisor_council.config import CouncilConfig
from advisor_council.llm.client import CacheablePrompt
from advisor_council.llm.generator import TextGenerator
from advisor_council.orchestration.events import EventBus
from advisor_council.orchestration.keywords import load_keyword_tables
from advisor_council.orchestration.state_machine import SessionStateMachine

EXPERT_NAME = re.compile(r"You are the (.+?) on a small panel")


class FakeClock:
    """Virtual time: sleeps are recorded and advance now() instantly."""

    def __init__(self, start: float = 1_000_000.0):
        self._now = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds
        await asyncio.sleep(0)


class MockBackend:
    """Backend whose output comes from a responder function (or raises from it)."""

    def __init__(self, responder=None, name: str = "mock", available: bool = True):
        self.name = name
        self._available = available
        self._responder = responder or (lambda prompt: "ok")
        self.calls: list[CacheablePrompt] = []

    @property
    def available(self) -> bool:
        return self._available

    async def generate(self, prompt: CacheablePrompt) -> str:
        self.calls.append(prompt)
        result = self._responder(prompt)
        if asyncio.iscoroutine(result):
            result = await result
        return result


def failing_responder(prompt: CacheablePrompt) -> str:
    raise RuntimeError("backend down")


def expert_name(prompt: CacheablePrompt) -> str | None:
    match = EXPERT_NAME.search(prompt.system)
    return match.group(1) if match else None


def council_responder(expert_lines: dict[str, str] | None = None):
    """Plausible text for every call type; expert_lines overrides collaboration text by name."""
    expert_lines = expert_lines or {}

    def respond(prompt: CacheablePrompt) -> str:
        if "health check assistant" in prompt.system:
            return "Health check OK"
        if "orchestrator" in prompt.system:
            return "Thanks for sharing. Tell me more about the project."
        if "lead architect" in prompt.system:
            return (
                "## Unified Recommendation\nUse React and Node.js.\n\n"
                "BUILD INSTRUCTIONS:\nScaffold a React app and a Node.js API.\n"
            )
        name = expert_name(prompt)
        if "Implementation Plan" in prompt.user_message:
            return f"## {name} Implementation Plan\nShip it in phases."
        if "The user answered" in prompt.user_message:
            return f"{name}: noted, that changes my recommendation slightly."
        return expert_lines.get(name, f"{name}: I recommend a clean modular design.")

    return respond


@pytest.fixture
def keywords():
    return load_keyword_tables()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    cfg = CouncilConfig()
    cfg.rounds.max_rounds = 2
    return cfg


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def make_machine(keywords, clock, config, events):
    """Build a SessionStateMachine over scripted primary/secondary backends."""

    def _make(primary=None, secondary=None, **overrides) -> SessionStateMachine:
        primary = primary or MockBackend(council_responder(), name="primary")
        generator = TextGenerator(primary=primary, secondary=secondary)
        return SessionStateMachine(
            generator=generator,
            events=overrides.get("events", events),
            config=overrides.get("config", config),
            clock=clock,
            keywords=keywords,
            prompts=overrides.get("prompts"),
        )

    return _make


@pytest.fixture
def recorded(events):
    """Every event published on the shared bus, in order."""
    seen = []
    events.add_listener(seen.append)
    return seen
