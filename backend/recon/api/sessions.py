from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from recon.schemas import SessionResponse, SessionSnapshotResponse, SessionStartRequest
from recon.services.session_protocol import SessionRegistry, SessionStatus

router = APIRouter(prefix="/sessions", tags=["sessions"])

_STATUS_CODES = {
    SessionStatus.COMPLETED: status.HTTP_200_OK,
    SessionStatus.CANCELLED: status.HTTP_200_OK,
    SessionStatus.ERRORED: status.HTTP_502_BAD_GATEWAY,
    SessionStatus.TIMED_OUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


@router.post("/{context_id}", response_model=SessionResponse)
async def start_session(
    context_id: str,
    payload: SessionStartRequest,
    response: Response,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    outcome = await registry.run(context_id, payload.instruction, payload.metadata)
    response.status_code = _STATUS_CODES.get(outcome.status, status.HTTP_200_OK)
    return SessionResponse(
        session_id=outcome.session_id,
        status=outcome.status.value,
        script=outcome.script,
        error=outcome.error,
        attempts=outcome.attempts,
        elapsed_ms=outcome.elapsed_ms,
    )


@router.get("/{context_id}", response_model=SessionSnapshotResponse)
async def get_session(context_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionSnapshotResponse:
    client = registry.peek(context_id)
    session = client.snapshot() if client else None
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")
    return SessionSnapshotResponse(
        session_id=session.session_id,
        status=session.status.value,
        instruction=session.instruction,
        created_at=session.created_at,
        attempts=session.attempts,
        current_backoff_ms=session.current_backoff_ms,
    )


@router.delete("/{context_id}")
async def cancel_session(context_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict[str, object]:
    session_id = await registry.cancel(context_id)
    return {"cancelled": session_id is not None, "session_id": session_id}
