"""
Engine configuration -- timeouts, retry envelopes, pacing, round policy.

Defaults live on the dataclasses; load_config() applies environment overrides.
Malformed environment values are ignored with a warning, never fatal.

Usage:
    config = load_config()
    machine = create_state_machine(config=config)
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 2
DEFAULT_SESSION_HORIZON = 3600.0
DEFAULT_HEALTH_INTERVAL = 300.0
DEFAULT_EVICTION_INTERVAL = 300.0


@dataclass
class TimeoutPolicy:
    """Per-call deadlines in seconds, applied to each backend attempt."""

    orchestrator: float = 45.0
    expert: float = 5.0
    expert_reply: float = 10.0
    plan: float = 10.0
    synthesis: float = 10.0
    health_probe: float = 10.0


@dataclass
class RetryPolicy:
    """Attempt counts and base delays (seconds) for each call site."""

    orchestrator_attempts: int = 2
    orchestrator_base_delay: float = 2.0
    expert_attempts: int = 2
    expert_base_delay: float = 1.0
    plan_attempts: int = 2
    plan_base_delay: float = 1.0
    synthesis_attempts: int = 2
    synthesis_base_delay: float = 2.0
    max_jitter: float = 1.0


@dataclass
class PacingConfig:
    """Named pauses (seconds) between visible steps of a session."""

    moderation_pause: float = 0.2
    round_pause: float = 0.2
    pre_planning_pause: float = 0.2
    discovery_to_assembly: float = 1.0
    assembly_to_collaboration: float = 3.0
    planning_prompt_pause: float = 1.0
    planning_to_synthesis: float = 1.0
    reply_pause: float = 0.5
    stream_chunk_delay: float = 0.05


@dataclass
class RoundPolicy:
    """Collaboration loop bounds."""

    max_rounds: int = DEFAULT_MAX_ROUNDS
    consensus_ratio: float = 0.8
    messages_per_expert_cap: int = 3
    reply_experts: int = 2
    max_experts: int = 4


@dataclass
class CouncilConfig:
    """Top-level configuration handed to every component at construction."""

    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    pacing: PacingConfig = field(default_factory=PacingConfig)
    rounds: RoundPolicy = field(default_factory=RoundPolicy)
    session_horizon: float = DEFAULT_SESSION_HORIZON
    health_interval: float = DEFAULT_HEALTH_INTERVAL
    eviction_interval: float = DEFAULT_EVICTION_INTERVAL
    primary_command: str = "claude"
    provider: str = "anthropic"
    keywords_path: str | None = None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"[Config] {name}={raw!r} is not an integer, using {default}")
        return default
    if value <= 0:
        logger.warning(f"[Config] {name} must be positive, using {default}")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"[Config] {name}={raw!r} is not a number, using {default}")
        return default
    if value <= 0:
        logger.warning(f"[Config] {name} must be positive, using {default}")
        return default
    return value


def load_config() -> CouncilConfig:
    """Build a CouncilConfig from defaults plus COUNCIL_* environment variables."""
    config = CouncilConfig()
    config.rounds.max_rounds = _env_int("COUNCIL_MAX_ROUNDS", config.rounds.max_rounds)
    config.session_horizon = _env_float("COUNCIL_SESSION_HORIZON", config.session_horizon)
    config.health_interval = _env_float("COUNCIL_HEALTH_INTERVAL", config.health_interval)
    config.timeouts.expert = _env_float("COUNCIL_EXPERT_TIMEOUT", config.timeouts.expert)
    config.timeouts.synthesis = _env_float(
        "COUNCIL_SYNTHESIS_TIMEOUT", config.timeouts.synthesis
    )
    config.primary_command = os.environ.get("COUNCIL_PRIMARY_COMMAND", config.primary_command)
    config.provider = os.environ.get("COUNCIL_PROVIDER", config.provider).lower()
    config.keywords_path = os.environ.get("COUNCIL_KEYWORDS_PATH") or None
    return config
