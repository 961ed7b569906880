from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from recon.core.errors import ValidationError
from recon.services.content_sniffer import SnifferLimits, sniff_upload
from recon.services.tabular_parser import ParsedTable, parse_table
from recon.services.upload_types import ErrorKind, UploadCandidate, ValidationVerdict

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    verdict: ValidationVerdict
    table: Optional[ParsedTable] = None


def ingest_upload(
    candidate: UploadCandidate,
    limits: Optional[SnifferLimits] = None,
    *,
    junk_sample_rows: Optional[int] = None,
) -> IngestResult:
    """Sniff, then parse. Every failure comes back as a rejected verdict."""
    verdict, sniff = sniff_upload(candidate, limits)
    if not verdict.is_valid or sniff is None:
        return IngestResult(verdict=verdict)

    try:
        table = parse_table(candidate, sniff, junk_sample_rows=junk_sample_rows)
    except ValidationError as exc:
        rejected = ValidationVerdict.reject(
            ErrorKind(exc.kind),
            exc.message,
            detected_type=sniff.detected_type,
            confidence=sniff.confidence,
            security_flag=exc.security_flag,
        )
        logger.warning(
            "upload rejected filename=%r kind=%s detected=%s flag=%s",
            candidate.filename,
            rejected.error_kind.value,
            rejected.detected_type,
            rejected.security_flag,
        )
        return IngestResult(verdict=rejected)

    logger.info(
        "upload accepted filename=%r detected=%s rows=%d columns=%d",
        candidate.filename,
        sniff.detected_type,
        table.summary.total_rows,
        table.summary.column_count,
    )
    accepted = ValidationVerdict(is_valid=True, detected_type=sniff.detected_type or "spreadsheet", confidence=0.95)
    return IngestResult(verdict=accepted, table=table)
