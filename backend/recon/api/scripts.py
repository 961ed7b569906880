from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, File, Form, Response, UploadFile, status

from recon.api.uploads import read_candidate, verdict_out
from recon.core.config import settings
from recon.schemas import ExecuteResponse
from recon.services.script_executor import ScriptExecutor
from recon.services.upload_pipeline import ingest_upload

router = APIRouter(prefix="/scripts", tags=["scripts"])


@router.post("/execute", response_model=ExecuteResponse)
def execute_script(
    response: Response,
    script: str = Form(...),
    file1: UploadFile = File(...),
    file2: Optional[UploadFile] = File(None),
) -> ExecuteResponse:
    uploads = {"file1": file1}
    if file2 is not None and file2.filename:
        uploads["file2"] = file2

    results = {name: ingest_upload(read_candidate(upload)) for name, upload in uploads.items()}
    verdicts = {name: verdict_out(r.verdict) for name, r in results.items()}

    rejected = [(name, r.verdict) for name, r in results.items() if not r.verdict.is_valid]
    if rejected:
        name, verdict = rejected[0]
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        return ExecuteResponse(
            success=False,
            error=f"{name}: {verdict.error}",
            error_kind=verdict.error_kind.value if verdict.error_kind else None,
            verdicts=verdicts,
        )

    table2 = results["file2"].table if "file2" in results else None
    outcome = ScriptExecutor().execute(script, results["file1"].table, table2)

    rows = outcome.result_rows or []
    limit = settings.result_preview_limit
    return ExecuteResponse(
        success=outcome.success,
        result=rows[:limit],
        error=outcome.error_message,
        error_kind=outcome.error_kind.value if outcome.error_kind else None,
        row_count=len(rows),
        truncated=len(rows) > limit,
        elapsed_ms=outcome.elapsed_ms,
        logs=outcome.logs,
        options=outcome.options,
        additional_tables=outcome.additional_tables,
        verdicts=verdicts,
    )
