"""
Advisory session API -- thin HTTP adapter over the SessionStateMachine.

  POST /api/v1/sessions                  -- Start a session (Discovery)
  POST /api/v1/sessions/{id}/messages    -- Submit a user message
  POST /api/v1/sessions/{id}/stop        -- Stop a session
  GET  /api/v1/sessions/{id}             -- Session snapshot
  GET  /api/v1/sessions/{id}/events      -- Server-Sent Events stream

Security:
  - Text fields length-checked by the request models and again by the engine
"""

import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ...errors import SessionNotFound
from ...harness.session import SessionOptions
from ...orchestration.events import event_to_dict
from ...security import ValidationError
from ..models.requests import StartSessionRequest, UserMessageRequest
from ..models.responses import (
    SessionResponse,
    StartSessionResponse,
    StopResponse,
    TurnResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _machine(request: Request):
    return request.app.state.machine


@router.post("/sessions", response_model=StartSessionResponse)
async def start_session(body: StartSessionRequest, request: Request) -> StartSessionResponse:
    """Open a session and return the orchestrator's first message."""
    options = SessionOptions(**body.options.model_dump())
    try:
        started = await _machine(request).start(body.user_id, body.text, options)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"[SessionsAPI] Started {started.session_id}")
    return StartSessionResponse(
        session_id=started.session_id,
        phase=started.phase.value,
        first_message=started.first_message,
    )


@router.post("/sessions/{session_id}/messages", response_model=TurnResponse)
async def submit_message(
    session_id: str, body: UserMessageRequest, request: Request
) -> TurnResponse:
    """Submit a user message; the response depends on the session phase."""
    try:
        result = await _machine(request).submit_user_message(session_id, body.text)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TurnResponse(
        session_id=result.session_id,
        phase=result.phase.value,
        status=result.status,
        reply=result.reply,
        selected_experts=list(result.selected_experts),
    )


@router.post("/sessions/{session_id}/stop", response_model=StopResponse)
async def stop_session(session_id: str, request: Request) -> StopResponse:
    stopped = _machine(request).stop(session_id)
    if not stopped:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return StopResponse(session_id=session_id, stopped=True)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, request: Request) -> SessionResponse:
    session = _machine(request).get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return SessionResponse(**session.to_dict())


@router.get("/sessions/{session_id}/events")
async def stream_events(session_id: str, request: Request) -> StreamingResponse:
    """
    Server-Sent Events for one session.

    Each event is named by its event_type (phase-change, expert-message, ...).
    The stream ends with a 'done' event when the session completes or stops.
    """
    machine = _machine(request)
    session = machine.get_session(session_id)
    if session is None or not session.active:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")

    subscription = machine.events.subscribe(session_id)

    async def event_generator():
        try:
            async for event in subscription:
                yield _sse_event(event.event_type, event_to_dict(event))
            yield _sse_event("done", {"session_id": session_id})
        finally:
            subscription.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
