"""Content sniffing tests."""

from __future__ import annotations

import pytest

from recon.services.content_sniffer import (
    SnifferLimits,
    has_suspicious_double_extension,
    sniff_bytes,
    sniff_upload,
)
from recon.services.upload_types import ErrorKind, UploadCandidate

CSV = b"Date,Card Brand,Amount\n2024-01-01,Visa,10.00\n2024-01-02,Mastercard,12.50\n"
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 200
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 100
PDF = b"%PDF-1.7\n" + b"\x00" * 100
EXE = b"MZ\x90\x00\x03\x00\x00\x00" + b"\x00" * 100
OLE2 = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 200
ZIP = b"PK\x03\x04" + b"\x00" * 200


def _candidate(data: bytes, filename: str) -> UploadCandidate:
    return UploadCandidate.from_bytes(data, filename)


@pytest.mark.parametrize("filename", ["report.csv", "report.xlsx", "photo.jpg", "ledger.xls"])
def test_jpeg_rejected_regardless_of_extension(filename: str) -> None:
    verdict, sniff = sniff_upload(_candidate(JPEG, filename))
    assert sniff is None
    assert verdict.is_valid is False
    assert verdict.error_kind is ErrorKind.TYPE_MISMATCH
    assert verdict.detected_type == "jpeg"
    assert "JPEG" in verdict.security_flag


@pytest.mark.parametrize(
    ("data", "expected"),
    [(PNG, "png"), (PDF, "pdf"), (EXE, "exe"), (b"GIF89a" + b"\x00" * 50, "gif"), (b"Rar!\x1a\x07\x00" + b"\x00" * 50, "rar")],
)
def test_denylisted_signatures(data: bytes, expected: str) -> None:
    verdict, _ = sniff_upload(_candidate(data, "upload.csv"))
    assert verdict.error_kind is ErrorKind.TYPE_MISMATCH
    assert verdict.detected_type == expected


@pytest.mark.parametrize("filename", ["malicious.xlsx.jpg", "payload.exe.csv", "invoice.pdf.xlsx", "Q1.CSV.ZIP"])
def test_double_extension_rejected_before_content(filename: str) -> None:
    # Content is a perfectly good CSV; the name alone decides.
    verdict, sniff = sniff_upload(_candidate(CSV, filename))
    assert sniff is None
    assert verdict.error_kind is ErrorKind.DOUBLE_EXTENSION_SUSPICIOUS
    assert verdict.detected_type is None
    assert verdict.security_flag


@pytest.mark.parametrize("filename", ["report.2024.csv", "my.data.xlsx", "archive.tar.gz", "data.csv.json"])
def test_benign_multi_dot_names(filename: str) -> None:
    assert has_suspicious_double_extension(filename) is False


def test_empty_buffer_rejected() -> None:
    verdict, _ = sniff_upload(_candidate(b"", "empty.csv"))
    assert verdict.error_kind is ErrorKind.EMPTY


def test_size_ceiling_enforced() -> None:
    limits = SnifferLimits(max_bytes=32, prefix_bytes=512, printable_ratio=0.8, allowed_extensions=("csv",))
    verdict, _ = sniff_upload(_candidate(CSV, "big.csv"), limits)
    assert verdict.error_kind is ErrorKind.TOO_LARGE


def test_declared_size_over_ceiling_rejected() -> None:
    candidate = UploadCandidate(data=CSV, filename="big.csv", declared_size=60 * 1024 * 1024)
    verdict, _ = sniff_upload(candidate)
    assert verdict.error_kind is ErrorKind.TOO_LARGE


def test_extension_allowlist_applies_after_content() -> None:
    verdict, _ = sniff_upload(_candidate(CSV, "data.txt"))
    assert verdict.error_kind is ErrorKind.EXTENSION_NOT_ALLOWED
    assert verdict.detected_type == "text-based"


def test_zip_is_deferred_not_rejected() -> None:
    verdict, sniff = sniff_upload(_candidate(ZIP, "book.xlsx"))
    assert verdict.is_valid is True
    assert sniff.detected_type == "zip-based"
    assert sniff.confidence == pytest.approx(0.7)
    assert sniff.is_container


def test_ole2_is_deferred_not_rejected() -> None:
    verdict, sniff = sniff_upload(_candidate(OLE2, "legacy.xls"))
    assert verdict.is_valid is True
    assert sniff.detected_type == "xls"


def test_csv_classified_as_text() -> None:
    verdict, sniff = sniff_upload(_candidate(CSV, "data.csv"))
    assert verdict.is_valid is True
    assert sniff.is_text


def test_riff_forms_are_distinguished() -> None:
    webp = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 40
    avi = b"RIFF\x24\x00\x00\x00AVI LIST" + b"\x00" * 40
    assert sniff_bytes(webp).detected_type == "webp"
    assert sniff_bytes(avi).detected_type == "avi"


def test_text_starting_with_bm_is_not_a_bitmap() -> None:
    result = sniff_bytes(b"BMI,Weight,Height\n22.1,70,178\n")
    assert result.detected_type == "text-based"


def test_binary_without_signature_is_indeterminate() -> None:
    result = sniff_bytes(bytes(range(256)) * 2)
    assert result.detected_type is None
    assert result.confidence == 0.0


def test_multi_extension_security_flag_wording() -> None:
    verdict, _ = sniff_upload(_candidate(JPEG, "scan.final.csv"))
    assert verdict.security_flag.startswith("SECURITY ALERT")
