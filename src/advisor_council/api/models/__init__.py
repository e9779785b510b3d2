"""Pydantic models for API request/response contracts."""
from .requests import SessionOptionsModel, StartSessionRequest, UserMessageRequest
from .responses import (
    HealthResponse,
    SessionResponse,
    StartSessionResponse,
    StopResponse,
    TurnResponse,
)
