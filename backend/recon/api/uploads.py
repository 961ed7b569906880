from __future__ import annotations

from fastapi import APIRouter, File, Response, UploadFile, status

from recon.core.config import settings
from recon.schemas import TableOut, TableSummaryOut, UploadResponse, VerdictOut
from recon.services.tabular_parser import ParsedTable
from recon.services.upload_pipeline import IngestResult, ingest_upload
from recon.services.upload_types import UploadCandidate, ValidationVerdict

router = APIRouter(prefix="/uploads", tags=["uploads"])


def read_candidate(upload: UploadFile) -> UploadCandidate:
    # Read one byte past the ceiling so oversize uploads are detectable
    # without buffering the whole body.
    data = upload.file.read(settings.max_upload_bytes + 1)
    declared = upload.size if upload.size is not None else len(data)
    return UploadCandidate(data=data, filename=upload.filename or "", declared_size=declared)


def verdict_out(verdict: ValidationVerdict) -> VerdictOut:
    return VerdictOut(
        is_valid=verdict.is_valid,
        detected_type=verdict.detected_type,
        confidence=verdict.confidence,
        error_kind=verdict.error_kind.value if verdict.error_kind else None,
        error=verdict.error,
        security_flag=verdict.security_flag,
    )


def table_out(table: ParsedTable, *, include_rows: bool) -> TableOut:
    limit = settings.result_preview_limit
    rows = table.rows[:limit] if include_rows else []
    return TableOut(
        filename=table.filename,
        headers=table.headers,
        rows=rows,
        summary=TableSummaryOut(total_rows=table.summary.total_rows, column_count=table.summary.column_count),
        truncated=include_rows and len(table.rows) > limit,
    )


def _respond(result: IngestResult, filename: str, response: Response, *, include_rows: bool) -> UploadResponse:
    if not result.verdict.is_valid:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return UploadResponse(
        filename=filename,
        verdict=verdict_out(result.verdict),
        table=table_out(result.table, include_rows=include_rows) if result.table else None,
    )


@router.post("/validate", response_model=UploadResponse)
def validate_upload(response: Response, file: UploadFile = File(...)) -> UploadResponse:
    candidate = read_candidate(file)
    return _respond(ingest_upload(candidate), candidate.filename, response, include_rows=False)


@router.post("/parse", response_model=UploadResponse)
def parse_upload(response: Response, file: UploadFile = File(...)) -> UploadResponse:
    candidate = read_candidate(file)
    return _respond(ingest_upload(candidate), candidate.filename, response, include_rows=True)
