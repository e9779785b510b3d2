"""
TextGenerator -- one completion interface over a primary and a secondary backend.

complete() tries the primary, then the secondary. Each attempt is raced against
the per-call deadline; a timeout, an error-marker response, an empty response
or a raised error falls through to the next backend. If every backend fails,
BothServicesUnavailable carries the per-backend errors.

Health is tracked per backend by a periodic probe that runs independently of
user traffic:
    generator.start_health_checks(interval=300)
    generator.recommended()      # "primary" or "secondary"
    generator.overall_health()   # excellent | good | degraded | poor
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from ..errors import BothServicesUnavailable, GenerationError, ServiceError
from ..orchestration.retry import with_deadline
from .client import CacheablePrompt

logger = logging.getLogger(__name__)

HEALTH_PROBE_PROMPT = "Health check test"
HEALTH_PROBE_SYSTEM = (
    'You are a health check assistant. Respond with exactly "Health check OK".'
)
HEALTH_PROBE_EXPECTED = "health check ok"
DEFAULT_ERROR_MARKERS = ("execution error",)
PRIMARY = "primary"
SECONDARY = "secondary"


class TextBackend(Protocol):
    """Anything that turns a prompt into text. CliBackend and ProviderBackend qualify."""

    name: str

    @property
    def available(self) -> bool: ...

    async def generate(self, prompt: CacheablePrompt) -> str: ...


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNAVAILABLE = "unavailable"


@dataclass
class BackendHealth:
    """Latest probe outcome for one backend."""

    backend: str
    status: HealthStatus = HealthStatus.UNKNOWN
    consecutive_failures: int = 0
    last_check: str | None = None
    last_error: str | None = None
    last_response: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class _Slot:
    role: str
    backend: TextBackend
    health: BackendHealth = field(init=False)

    def __post_init__(self):
        self.health = BackendHealth(backend=self.backend.name)


class TextGenerator:
    """Facade over the primary and secondary text backends."""

    def __init__(
        self,
        primary: TextBackend,
        secondary: TextBackend | None = None,
        error_markers: tuple[str, ...] = DEFAULT_ERROR_MARKERS,
        probe_timeout: float = 10.0,
    ):
        self._slots = [_Slot(PRIMARY, primary)]
        if secondary is not None:
            self._slots.append(_Slot(SECONDARY, secondary))
        self._error_markers = tuple(m.lower() for m in error_markers)
        self._probe_timeout = probe_timeout
        self._health_task: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    async def complete(
        self,
        prompt: str | CacheablePrompt,
        system_prompt: str = "",
        timeout: float = 30.0,
    ) -> str:
        """Generate text, falling through primary -> secondary on any failure."""
        if isinstance(prompt, str):
            prompt = CacheablePrompt(system=system_prompt, user_message=prompt)
        elif system_prompt and not prompt.system:
            prompt = CacheablePrompt(
                system=system_prompt, context=prompt.context, user_message=prompt.user_message
            )

        errors: dict[str, Exception] = {}
        for slot in self._slots:
            backend = slot.backend
            if not backend.available:
                errors[backend.name] = ServiceError("not configured", backend=backend.name)
                continue
            try:
                text = await self._attempt(backend, prompt, timeout)
                if slot.role != PRIMARY:
                    logger.info(f"[TextGenerator] Served by {slot.role} backend {backend.name}")
                return text
            except GenerationError as e:
                errors[backend.name] = e
                logger.warning(f"[TextGenerator] {slot.role} backend failed: {e}")

        raise BothServicesUnavailable(errors)

    async def _attempt(self, backend: TextBackend, prompt: CacheablePrompt, timeout: float) -> str:
        try:
            text = await with_deadline(backend.generate(prompt), timeout, backend=backend.name)
        except GenerationError:
            raise
        except Exception as e:
            raise ServiceError(f"{type(e).__name__}: {e}", backend=backend.name) from e

        if not text or not text.strip():
            raise ServiceError("empty response", backend=backend.name)
        if self.has_error_marker(text):
            raise ServiceError(f"error marker in response: {text[:120]}", backend=backend.name)
        return text.strip()

    def has_error_marker(self, text: str) -> bool:
        lowered = text.lower()
        return any(marker in lowered for marker in self._error_markers)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def check_health(self) -> dict[str, BackendHealth]:
        """Probe every backend once and return the refreshed health records."""
        await asyncio.gather(*[self._probe(slot) for slot in self._slots])
        return self.health()

    async def _probe(self, slot: _Slot) -> None:
        health = slot.health
        health.last_check = datetime.now().isoformat()

        if not slot.backend.available:
            health.status = HealthStatus.UNAVAILABLE
            health.consecutive_failures = 0
            health.last_error = "not configured"
            return

        prompt = CacheablePrompt(system=HEALTH_PROBE_SYSTEM, user_message=HEALTH_PROBE_PROMPT)
        try:
            text = await with_deadline(
                slot.backend.generate(prompt), self._probe_timeout, backend=slot.backend.name
            )
        except Exception as e:
            health.status = HealthStatus.UNHEALTHY
            health.consecutive_failures += 1
            health.last_error = str(e)
            logger.warning(f"[TextGenerator] {slot.role} probe failed: {e}")
            return

        health.last_response = (text or "")[:200]
        if text and HEALTH_PROBE_EXPECTED in text.lower():
            health.status = HealthStatus.HEALTHY
            health.consecutive_failures = 0
            health.last_error = None
        else:
            health.status = HealthStatus.DEGRADED
            health.consecutive_failures += 1
            health.last_error = "unexpected probe response"
            logger.warning(f"[TextGenerator] {slot.role} probe returned unexpected text")

    def health(self) -> dict[str, BackendHealth]:
        return {slot.role: slot.health for slot in self._slots}

    def recommended(self) -> str:
        """Role of the backend to prefer: healthy first, then fewest failures, primary on ties."""
        healthy = [s for s in self._slots if s.health.status == HealthStatus.HEALTHY]
        if healthy:
            return healthy[0].role
        candidates = [s for s in self._slots if s.health.status != HealthStatus.UNAVAILABLE]
        if not candidates:
            return PRIMARY
        best = min(candidates, key=lambda s: s.health.consecutive_failures)
        return best.role

    def overall_health(self) -> str:
        statuses = [s.health.status for s in self._slots]
        healthy = statuses.count(HealthStatus.HEALTHY)
        if healthy == len(statuses):
            return "excellent"
        if healthy > 0:
            return "good"
        if HealthStatus.DEGRADED in statuses:
            return "degraded"
        return "poor"

    def health_report(self) -> dict[str, Any]:
        return {
            "overall": self.overall_health(),
            "recommended": self.recommended(),
            "backends": {role: h.to_dict() for role, h in self.health().items()},
        }

    def start_health_checks(self, interval: float = 300.0) -> asyncio.Task:
        """Start the periodic probe loop on the running event loop."""
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop(interval))
            logger.info(f"[TextGenerator] Health checks every {interval:.0f}s")
        return self._health_task

    async def stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _health_loop(self, interval: float) -> None:
        while True:
            try:
                await self.check_health()
                logger.debug(f"[TextGenerator] Health: {self.overall_health()}")
            except Exception as e:
                logger.error(f"[TextGenerator] Health check loop error: {e}", exc_info=True)
            await asyncio.sleep(interval)


def create_generator(config: Any = None, keywords: Any = None) -> TextGenerator:
    """Build the default generator: local CLI primary, provider SDK secondary.

    Error markers come from the keyword tables (COUNCIL_KEYWORDS_PATH or the
    packaged table) unless already loaded tables are passed in.
    """
    from ..config import load_config
    from ..orchestration.keywords import load_keyword_tables
    from .cli_backend import CliBackend
    from .client import ProviderBackend

    config = config or load_config()
    keywords = keywords or load_keyword_tables(config.keywords_path)
    return TextGenerator(
        primary=CliBackend(command=config.primary_command),
        secondary=ProviderBackend(provider=config.provider),
        error_markers=keywords.error_markers or DEFAULT_ERROR_MARKERS,
        probe_timeout=config.timeouts.health_probe,
    )
