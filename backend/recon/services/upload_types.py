from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    EMPTY = "Empty"
    TOO_LARGE = "TooLarge"
    EXTENSION_NOT_ALLOWED = "ExtensionNotAllowed"
    DOUBLE_EXTENSION_SUSPICIOUS = "DoubleExtensionSuspicious"
    TYPE_MISMATCH = "TypeMismatch"
    STRUCTURAL_INVALID = "StructuralInvalid"
    BINARY_JUNK_DETECTED = "BinaryJunkDetected"


@dataclass(frozen=True)
class UploadCandidate:
    data: bytes
    filename: str
    declared_size: int

    @classmethod
    def from_bytes(cls, data: bytes, filename: str) -> "UploadCandidate":
        return cls(data=data, filename=filename, declared_size=len(data))

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else ""


@dataclass(frozen=True)
class ValidationVerdict:
    is_valid: bool
    detected_type: Optional[str] = None
    confidence: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    security_flag: Optional[str] = None

    @classmethod
    def reject(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        detected_type: Optional[str] = None,
        confidence: float = 0.0,
        security_flag: Optional[str] = None,
    ) -> "ValidationVerdict":
        return cls(
            is_valid=False,
            detected_type=detected_type,
            confidence=confidence,
            error_kind=kind,
            error=message,
            security_flag=security_flag,
        )
