"""
Content-first file type detection for uploads.

The filename is only consulted for the double-extension screen and the
extension allowlist; the verdict on what a buffer *is* comes from its bytes.
Known-bad signatures are rejected here. Spreadsheet containers (OLE2, ZIP)
and text are passed on to structural parsing, which has the final say.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from recon.core.config import settings
from recon.services.upload_types import ErrorKind, UploadCandidate, ValidationVerdict

logger = logging.getLogger(__name__)


ZIP_BASED = "zip-based"
TEXT_BASED = "text-based"
OLE2 = "xls"


@dataclass(frozen=True)
class Signature:
    file_type: str
    category: str
    prefixes: tuple[bytes, ...]
    confidence: float
    check: Optional[Callable[[bytes], bool]] = None

    def matches(self, head: bytes) -> bool:
        if not any(head.startswith(p) for p in self.prefixes):
            return False
        return self.check(head) if self.check else True


@dataclass(frozen=True)
class SniffResult:
    detected_type: Optional[str]
    category: str
    confidence: float

    @property
    def is_container(self) -> bool:
        return self.detected_type in {ZIP_BASED, OLE2}

    @property
    def is_text(self) -> bool:
        return self.detected_type == TEXT_BASED


def _riff_form(form: bytes) -> Callable[[bytes], bool]:
    return lambda head: head[8:12] == form


def _bmp_reserved_zero(head: bytes) -> bool:
    # Bytes 6..9 are reserved and always zero in a real bitmap header.
    return len(head) >= 10 and head[6:10] == b"\x00\x00\x00\x00"


def _ftyp_box(head: bytes) -> bool:
    return head[4:8] == b"ftyp"


# Order matters: first match wins.
SIGNATURES: tuple[Signature, ...] = (
    Signature(
        "jpeg",
        "image",
        (
            b"\xff\xd8\xff\xe0",  # JFIF
            b"\xff\xd8\xff\xe1",  # EXIF
            b"\xff\xd8\xff\xe2",
            b"\xff\xd8\xff\xe3",
            b"\xff\xd8\xff\xe8",  # SPIFF
            b"\xff\xd8\xff\xdb",  # raw
        ),
        0.99,
    ),
    Signature("png", "image", (b"\x89PNG\r\n\x1a\n",), 0.99),
    Signature("gif", "image", (b"GIF87a", b"GIF89a"), 0.99),
    Signature("bmp", "image", (b"BM",), 0.9, _bmp_reserved_zero),
    Signature("webp", "image", (b"RIFF",), 0.98, _riff_form(b"WEBP")),
    Signature("tiff", "image", (b"II*\x00", b"MM\x00*"), 0.98),
    Signature("ico", "image", (b"\x00\x00\x01\x00",), 0.9),
    Signature("mp3", "audio", (b"ID3", b"\xff\xfb", b"\xff\xf3", b"\xff\xf2"), 0.85),
    Signature(
        "mp4",
        "video",
        (b"\x00\x00\x00\x18ftyp", b"\x00\x00\x00\x20ftyp", b"\x00\x00\x00\x14ftyp"),
        0.95,
        _ftyp_box,
    ),
    Signature("avi", "video", (b"RIFF",), 0.98, _riff_form(b"AVI ")),
    Signature("pdf", "document", (b"%PDF",), 0.99),
    Signature("zip", "archive", (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08"), 0.7),
    Signature("rar", "archive", (b"Rar!\x1a\x07\x00",), 0.99),
    Signature("7z", "archive", (b"7z\xbc\xaf\x27\x1c",), 0.99),
    Signature("exe", "executable", (b"MZ",), 0.9),
    Signature(OLE2, "spreadsheet", (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",), 0.9),
)

ALLOWED_TYPES = {OLE2, ZIP_BASED, TEXT_BASED}

SPREADSHEET_EXTENSIONS = ("csv", "xlsx", "xls", "ods")
DANGEROUS_EXTENSIONS = (
    # executables and scripts
    "exe", "com", "bat", "cmd", "scr", "msi", "dll", "ps1", "vbs", "js", "jar", "sh",
    # images
    "jpg", "jpeg", "png", "gif", "bmp", "webp", "tif", "tiff", "ico", "svg",
    # audio/video
    "mp3", "mp4", "mov", "avi", "wav",
    # archives and documents
    "zip", "rar", "7z", "gz", "tar", "pdf", "html", "htm",
)

_DANGER = "|".join(DANGEROUS_EXTENSIONS)
_SHEET = "|".join(SPREADSHEET_EXTENSIONS)
# Any adjacent pair mixing a dangerous and a spreadsheet extension, either order.
_DOUBLE_EXTENSION_RE = re.compile(
    rf"\.(?:(?:{_DANGER})\.(?:{_SHEET})|(?:{_SHEET})\.(?:{_DANGER}))(?=\.|$)",
    re.IGNORECASE,
)


def has_suspicious_double_extension(filename: str) -> bool:
    return bool(_DOUBLE_EXTENSION_RE.search(filename.strip()))


def _is_mostly_printable(head: bytes, ratio: float) -> bool:
    sample = head[:512]
    if not sample:
        return False
    printable = sum(1 for b in sample if 32 <= b <= 126 or b in (9, 10, 13))
    return printable / len(sample) >= ratio


def sniff_bytes(head: bytes, *, printable_ratio: Optional[float] = None) -> SniffResult:
    """Classify a byte prefix by magic signature, falling back to a text heuristic."""
    for sig in SIGNATURES:
        if sig.matches(head):
            if sig.file_type == "zip":
                # A ZIP could be an xlsx/ods container; structural parsing decides.
                return SniffResult(detected_type=ZIP_BASED, category="container", confidence=0.7)
            return SniffResult(detected_type=sig.file_type, category=sig.category, confidence=sig.confidence)

    ratio = settings.text_printable_ratio if printable_ratio is None else printable_ratio
    if _is_mostly_printable(head, ratio):
        return SniffResult(detected_type=TEXT_BASED, category="text", confidence=0.6)

    return SniffResult(detected_type=None, category="unknown", confidence=0.0)


def security_warning(filename: str, detected_type: str) -> str:
    label = detected_type.upper()
    if filename.count(".") > 1:
        return (
            f'SECURITY ALERT: File "{filename}" has multiple extensions and is actually {label}. '
            "This is a common attack vector."
        )
    return f"File type mismatch: claims to be a spreadsheet but is actually {label}."


@dataclass
class SnifferLimits:
    max_bytes: int
    prefix_bytes: int
    printable_ratio: float
    allowed_extensions: tuple[str, ...]

    @classmethod
    def from_settings(cls) -> "SnifferLimits":
        return cls(
            max_bytes=settings.max_upload_bytes,
            prefix_bytes=settings.sniff_prefix_bytes,
            printable_ratio=settings.text_printable_ratio,
            allowed_extensions=tuple(settings.allowed_extensions),
        )


def sniff_upload(
    candidate: UploadCandidate,
    limits: Optional[SnifferLimits] = None,
) -> tuple[ValidationVerdict, Optional[SniffResult]]:
    """
    Run the pre-structural checks on an upload.

    Returns the verdict and, when the verdict passes, the sniff result that
    tells the parser which path (text or container) to take. A passing
    verdict here only means "not known-bad"; the parser may still reject.
    """
    limits = limits or SnifferLimits.from_settings()
    filename = candidate.filename
    size = len(candidate.data)

    if size == 0:
        return _rejected(filename, ValidationVerdict.reject(ErrorKind.EMPTY, "File is empty")), None

    if size > limits.max_bytes or candidate.declared_size > limits.max_bytes:
        mb = limits.max_bytes // (1024 * 1024)
        return _rejected(filename, ValidationVerdict.reject(ErrorKind.TOO_LARGE, f"File size exceeds {mb}MB limit")), None

    if has_suspicious_double_extension(filename):
        verdict = ValidationVerdict.reject(
            ErrorKind.DOUBLE_EXTENSION_SUSPICIOUS,
            f'Filename "{filename}" mixes a dangerous and a spreadsheet extension. Upload rejected for security.',
            security_flag=f'SECURITY ALERT: File "{filename}" uses a double extension, a common attack vector.',
        )
        return _rejected(filename, verdict), None

    head = candidate.data[: limits.prefix_bytes]
    result = sniff_bytes(head, printable_ratio=limits.printable_ratio)

    if result.detected_type and result.detected_type not in ALLOWED_TYPES:
        verdict = ValidationVerdict.reject(
            ErrorKind.TYPE_MISMATCH,
            f"File is actually {result.detected_type.upper()}, not a spreadsheet. Upload rejected for security.",
            detected_type=result.detected_type,
            confidence=result.confidence,
            security_flag=security_warning(filename, result.detected_type),
        )
        return _rejected(filename, verdict), None

    if candidate.extension not in limits.allowed_extensions:
        allowed = ", ".join(f".{e}" for e in limits.allowed_extensions)
        verdict = ValidationVerdict.reject(
            ErrorKind.EXTENSION_NOT_ALLOWED,
            f"Only {allowed} files are accepted",
            detected_type=result.detected_type,
            confidence=result.confidence,
        )
        return _rejected(filename, verdict), None

    verdict = ValidationVerdict(
        is_valid=True,
        detected_type=result.detected_type,
        confidence=result.confidence,
    )
    return verdict, result


def _rejected(filename: str, verdict: ValidationVerdict) -> ValidationVerdict:
    logger.warning(
        "upload rejected filename=%r kind=%s detected=%s flag=%s",
        filename,
        verdict.error_kind.value if verdict.error_kind else None,
        verdict.detected_type,
        verdict.security_flag,
    )
    return verdict
