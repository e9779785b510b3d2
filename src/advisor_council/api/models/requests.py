"""
Pydantic request models -- the HTTP contract for driving a session.

  POST /api/v1/sessions                 -> StartSessionRequest
  POST /api/v1/sessions/{id}/messages   -> UserMessageRequest
"""

from pydantic import BaseModel, Field


class SessionOptionsModel(BaseModel):
    """Per-session knobs; omitted fields use server defaults."""

    max_experts: int = Field(4, ge=1, le=4, description="Upper bound on panel size")
    include_user_in_collaboration: bool = Field(
        True, description="Pause collaboration when an expert asks the user a question"
    )
    streaming: bool = Field(False, description="Emit orchestrator text as stream-chunk events")
    max_rounds: int | None = Field(None, ge=1, le=10, description="Override collaboration rounds")


class StartSessionRequest(BaseModel):
    """Open a new advisory session with the user's initial request."""

    user_id: str = Field(..., min_length=1, max_length=200)
    text: str = Field(..., min_length=1, max_length=10_000, description="Initial project request")
    options: SessionOptionsModel = Field(default_factory=SessionOptionsModel)


class UserMessageRequest(BaseModel):
    """A user turn inside an existing session."""

    text: str = Field(..., min_length=1, max_length=10_000)
