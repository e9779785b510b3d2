"""
Pydantic response models -- what the API returns to clients.
"""

from typing import Any

from pydantic import BaseModel, Field


class StartSessionResponse(BaseModel):
    session_id: str
    phase: str
    first_message: str


class TurnResponse(BaseModel):
    """Outcome of one user message."""

    session_id: str
    phase: str
    status: str
    reply: str | None = None
    selected_experts: list[str] = Field(default_factory=list)


class StopResponse(BaseModel):
    session_id: str
    stopped: bool


class SessionResponse(BaseModel):
    """Full session snapshot: phase, context, transcript, plans, synthesis."""

    id: str
    user_id: str
    phase: str
    active: bool
    started_at: float
    last_activity: float
    current_round: int = 0
    awaiting_user: bool = False
    context: dict[str, Any] = Field(default_factory=dict)
    selected_experts: list[str] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    expert_plans: list[dict[str, Any]] = Field(default_factory=list)
    synthesis: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    """Liveness plus text-generation backend health."""

    status: str = "healthy"
    version: str = "0.1.0"
    uptime_seconds: float = 0.0
    active_sessions: int = 0
    generation: dict[str, Any] = Field(default_factory=dict)
