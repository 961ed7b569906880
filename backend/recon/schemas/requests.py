from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SessionStartRequest(BaseModel):
    instruction: str = Field(min_length=1, description="What the generated script should do")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Passed through to the generator")
