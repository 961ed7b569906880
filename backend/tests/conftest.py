"""Shared fixtures: an in-memory generator channel and spreadsheet builders."""

from __future__ import annotations

import io
import json
from collections import Counter
from typing import Any, Callable, Optional

import openpyxl
import pytest

from recon.core.errors import SubmissionError
from recon.services.session_transport import SessionRequest, SessionTransport
from recon.services.tabular_parser import ParsedTable


def _envelope(session_id: str, payload: str, status: str = "completed") -> str:
    return json.dumps({"sessionId": session_id, "timestamp": 1700000000000, "payload": payload, "status": status})


class InMemoryTransport(SessionTransport):
    def __init__(self) -> None:
        self.requests: list[SessionRequest] = []
        self.artifacts: dict[str, str] = {}
        self.polls: Counter[str] = Counter()
        self.events: list[tuple[str, str]] = []
        self.fail_submit = False
        self.auto_reply: Optional[Callable[[SessionRequest], Optional[str]]] = None
        self.reply_after_polls = 1
        self.discarded: list[str] = []

    async def submit(self, request: SessionRequest) -> None:
        if self.fail_submit:
            raise SubmissionError("Generator unreachable")
        self.requests.append(request)
        self.events.append(("submit", request.session_id))

    async def try_fetch(self, session_id: str) -> Optional[str]:
        self.polls[session_id] += 1
        self.events.append(("poll", session_id))
        if session_id in self.artifacts:
            return self.artifacts[session_id]
        if self.auto_reply and self.polls[session_id] >= self.reply_after_polls:
            request = next(r for r in self.requests if r.session_id == session_id)
            return self.auto_reply(request)
        return None

    async def discard(self, session_id: str) -> None:
        self.discarded.append(session_id)
        self.artifacts.pop(session_id, None)


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def envelope() -> Callable[..., str]:
    return _envelope


@pytest.fixture
def xlsx_bytes() -> Callable[[list[list[Any]]], bytes]:
    def build(rows: list[list[Any]]) -> bytes:
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        workbook.close()
        return buffer.getvalue()

    return build


@pytest.fixture
def make_table() -> Callable[..., ParsedTable]:
    def build(headers: list[str], rows: list[list[Any]], filename: str = "data.csv") -> ParsedTable:
        return ParsedTable(
            filename=filename,
            headers=headers,
            rows=[{h: (r[i] if i < len(r) else "") for i, h in enumerate(headers)} for r in rows],
        )

    return build
