"""
Error taxonomy for the advisory session engine.

Generation failures are recoverable: call sites retry them and, on exhaustion,
substitute deterministic fallback text so a session always reaches Complete.
SessionNotFound and PhaseTransitionError are never retried.
"""


class CouncilError(Exception):
    """Base class for all advisor-council errors."""


class GenerationError(CouncilError):
    """A text-generation call did not produce usable output."""


class GenerationTimeout(GenerationError):
    """A generation call exceeded its deadline."""

    def __init__(self, timeout: float, backend: str = ""):
        self.timeout = timeout
        self.backend = backend
        where = f" ({backend})" if backend else ""
        super().__init__(f"Generation timed out after {timeout:.1f}s{where}")


class ServiceError(GenerationError):
    """A backend raised, returned an error marker, or returned nothing."""

    def __init__(self, message: str, backend: str = ""):
        self.backend = backend
        super().__init__(f"[{backend}] {message}" if backend else message)


class BothServicesUnavailable(GenerationError):
    """Every configured backend failed for a single call."""

    def __init__(self, errors: dict[str, Exception] | None = None):
        self.errors = errors or {}
        detail = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(
            f"All text-generation backends failed{': ' + detail if detail else ''}"
        )


class SessionNotFound(CouncilError):
    """The session id is unknown, evicted, or no longer active."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found or inactive: {session_id}")


class PhaseTransitionError(CouncilError):
    """An illegal phase transition or a write to a fixed field was attempted."""
