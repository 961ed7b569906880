"""
Channels between a session and the external script generator.

A transport does two things: submit a request, and try to fetch the
response artifact for a session id. Absence of an artifact is ``None``,
never an error.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from recon.core.config import settings
from recon.core.errors import SubmissionError, TransportError
from recon.services.http_client import get_bytes, post_json, try_parse_json

logger = logging.getLogger(__name__)


@dataclass
class SessionRequest:
    session_id: str
    instruction: str
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "instruction": self.instruction,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
        }
        if self.metadata:
            body["metadata"] = self.metadata
        return body


class SessionTransport(abc.ABC):
    @abc.abstractmethod
    async def submit(self, request: SessionRequest) -> None:
        """Deliver the request. Raises SubmissionError on any failure."""

    @abc.abstractmethod
    async def try_fetch(self, session_id: str) -> Optional[str]:
        """Return the raw response artifact, or None if it is not there yet."""

    async def discard(self, session_id: str) -> None:
        """Drop whatever the channel still holds for a finished session."""


class HttpSessionTransport(SessionTransport):
    def __init__(self, submit_url: str, response_url_template: str):
        if "{session_id}" not in response_url_template:
            raise ValueError("response_url_template must contain '{session_id}'")
        self.submit_url = submit_url
        self.response_url_template = response_url_template

    async def submit(self, request: SessionRequest) -> None:
        try:
            result = await asyncio.to_thread(post_json, self.submit_url, request.to_wire())
        except TransportError as exc:
            raise SubmissionError(f"Generator unreachable: {exc.message}") from exc

        if not result.ok:
            raise SubmissionError(f"Generator rejected submission (HTTP {result.status_code})")

        body = try_parse_json(result.content)
        if isinstance(body, dict) and body.get("success") is False:
            raise SubmissionError(str(body.get("error") or "Generator reported failure"))

    async def try_fetch(self, session_id: str) -> Optional[str]:
        url = self.response_url_template.format(session_id=session_id)
        result = await asyncio.to_thread(get_bytes, url)
        if result.status_code == 404:
            return None
        if not result.ok:
            raise TransportError(f"HTTP {result.status_code} fetching response for {session_id}")
        return result.text()


class FileSessionTransport(SessionTransport):
    """Request/response files in a shared exchange directory."""

    def __init__(self, directory: Path | str, prefix: str = "recon"):
        self.directory = Path(directory)
        self.prefix = prefix

    def request_path(self, session_id: str) -> Path:
        return self.directory / f"{self.prefix}-request-{session_id}.json"

    def response_path(self, session_id: str) -> Path:
        return self.directory / f"{self.prefix}-response-{session_id}.json"

    def _write_atomic(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)

    async def submit(self, request: SessionRequest) -> None:
        path = self.request_path(request.session_id)
        try:
            await asyncio.to_thread(self._write_atomic, path, json.dumps(request.to_wire(), indent=2))
        except OSError as exc:
            raise SubmissionError(f"Failed to write request file: {exc}") from exc
        logger.debug("request written path=%s", path)

    async def try_fetch(self, session_id: str) -> Optional[str]:
        path = self.response_path(session_id)
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TransportError(f"Failed to read {path.name}: {exc}") from exc
        # A response still being written may end mid-character.
        return raw.decode("utf-8", errors="replace")

    def _remove(self, session_id: str) -> None:
        for path in (self.request_path(session_id), self.response_path(session_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("could not remove %s: %s", path.name, exc)

    async def discard(self, session_id: str) -> None:
        await asyncio.to_thread(self._remove, session_id)


def build_transport() -> SessionTransport:
    if settings.session_transport == "file":
        return FileSessionTransport(settings.exchange_dir)
    return HttpSessionTransport(settings.generator_submit_url, settings.generator_response_url)
