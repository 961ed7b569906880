from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class VerdictOut(BaseModel):
    is_valid: bool
    detected_type: Optional[str] = None
    confidence: float = 0.0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    security_flag: Optional[str] = None


class TableSummaryOut(BaseModel):
    total_rows: int
    column_count: int


class TableOut(BaseModel):
    filename: str
    headers: list[str]
    rows: list[dict[str, Any]] = Field(default_factory=list)
    summary: TableSummaryOut
    truncated: bool = False


class UploadResponse(BaseModel):
    filename: str
    verdict: VerdictOut
    table: Optional[TableOut] = None


class ExecuteResponse(BaseModel):
    success: bool
    result: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    row_count: int = 0
    truncated: bool = False
    elapsed_ms: int = 0
    logs: list[str] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)
    additional_tables: list[str] = Field(default_factory=list)
    verdicts: dict[str, VerdictOut] = Field(default_factory=dict)
