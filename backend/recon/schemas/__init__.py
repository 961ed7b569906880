from recon.schemas.common import ExecuteResponse, TableOut, TableSummaryOut, UploadResponse, VerdictOut
from recon.schemas.requests import SessionStartRequest
from recon.schemas.session import ResponseEnvelope, SessionResponse, SessionSnapshotResponse

__all__ = [
    "ExecuteResponse",
    "TableOut",
    "TableSummaryOut",
    "UploadResponse",
    "VerdictOut",
    "SessionStartRequest",
    "ResponseEnvelope",
    "SessionResponse",
    "SessionSnapshotResponse",
]
