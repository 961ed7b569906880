from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ResponseEnvelope(BaseModel):
    """Response artifact written by the script generator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str = Field(alias="sessionId", min_length=1)
    timestamp: Union[int, float, str]
    payload: str
    status: str = "completed"


class SessionResponse(BaseModel):
    session_id: str
    status: str
    script: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    elapsed_ms: int = 0


class SessionSnapshotResponse(BaseModel):
    session_id: str
    status: str
    instruction: str
    created_at: float
    attempts: int
    current_backoff_ms: int
