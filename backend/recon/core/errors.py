from __future__ import annotations

from typing import Optional


class ReconError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReconError):
    """Raised inside the sniffer/parser; converted to a verdict at the ingest boundary."""

    def __init__(self, kind: str, message: str, security_flag: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.security_flag = security_flag


class ScriptRejected(ReconError):
    pass


class SubmissionError(ReconError):
    pass


class TransportError(ReconError):
    pass
