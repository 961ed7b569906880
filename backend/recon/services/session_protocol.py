"""
Asynchronous request/response exchange that obtains a generated script.

One SessionClient is one caller context. It holds at most one active
session; starting another aborts the current one first, and only then
submits, so a late response from the old session can never be taken for
the new one's.

    Created -> Sent -> Polling -> Completed | Errored | TimedOut | Cancelled

Polling waits are interruptible, and the abort flag is checked before each
poll and again before a fetched artifact is acted on.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from recon.core.config import settings
from recon.core.errors import SubmissionError, TransportError
from recon.schemas.session import ResponseEnvelope
from recon.services.session_transport import SessionRequest, SessionTransport

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    CREATED = "created"
    SENT = "sent"
    POLLING = "polling"
    COMPLETED = "completed"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {
    SessionStatus.COMPLETED,
    SessionStatus.ERRORED,
    SessionStatus.TIMED_OUT,
    SessionStatus.CANCELLED,
}

_session_counter = itertools.count()


def new_session_id() -> str:
    """Timestamp, random component and process-wide counter. Not a secret."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}-{next(_session_counter)}"


@dataclass(frozen=True)
class PollSchedule:
    base_delay_ms: int = 250
    backoff_factor: float = 1.1
    max_delay_ms: int = 750
    max_attempts: int = 150

    @classmethod
    def from_settings(cls) -> "PollSchedule":
        return cls(
            base_delay_ms=settings.poll_base_delay_ms,
            backoff_factor=settings.poll_backoff_factor,
            max_delay_ms=settings.poll_max_delay_ms,
            max_attempts=settings.poll_max_attempts,
        )

    def delay_ms(self, attempt: int) -> int:
        """Delay after the given (1-based) attempt, capped at max_delay_ms."""
        raw = self.base_delay_ms * (self.backoff_factor ** max(attempt - 1, 0))
        return int(min(raw, self.max_delay_ms))

    def total_budget_ms(self) -> int:
        return sum(self.delay_ms(n) for n in range(1, self.max_attempts))


@dataclass
class ScriptSession:
    session_id: str
    instruction: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    status: SessionStatus = SessionStatus.CREATED
    attempts: int = 0
    current_backoff_ms: int = 0
    _abort: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        self._abort.set()

    async def sleep_or_abort(self, seconds: float) -> bool:
        """Sleep; return True early if the session was aborted meanwhile."""
        try:
            await asyncio.wait_for(self._abort.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def snapshot(self) -> "ScriptSession":
        return replace(self)


@dataclass
class SessionOutcome:
    session_id: str
    status: SessionStatus
    script: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == SessionStatus.COMPLETED


def _looks_incomplete(payload: str) -> bool:
    text = payload.strip()
    if not text:
        return True
    lowered = text.lower()
    if "<!doctype" in lowered or "<html" in lowered:
        return True
    if abs(text.count("{") - text.count("}")) > 2:
        return True
    return False


def parse_envelope(artifact: str, session_id: str) -> Optional[ResponseEnvelope]:
    """Parse a fetched artifact. None means "not ready yet", keep polling."""
    try:
        envelope = ResponseEnvelope.model_validate_json(artifact)
    except PydanticValidationError as exc:
        logger.warning("unparseable response artifact session=%s errors=%d", session_id, exc.error_count())
        return None

    if envelope.session_id != session_id:
        logger.warning("ignoring stale artifact for session=%s (expected %s)", envelope.session_id, session_id)
        return None

    if envelope.status.lower() != "error" and _looks_incomplete(envelope.payload):
        logger.warning("response payload for session=%s looks incomplete; waiting", session_id)
        return None

    return envelope


class SessionClient:
    """The single "current session" slot of one caller context."""

    def __init__(self, transport: SessionTransport, schedule: Optional[PollSchedule] = None):
        self.transport = transport
        self.schedule = schedule or PollSchedule.from_settings()
        self._current: Optional[ScriptSession] = None
        self._swap_lock = asyncio.Lock()
        self._runs = 0

    @property
    def current(self) -> Optional[ScriptSession]:
        return self._current

    @property
    def idle(self) -> bool:
        """No run in progress or waiting to supersede one."""
        return self._runs == 0 and self._current is None

    def snapshot(self) -> Optional[ScriptSession]:
        return self._current.snapshot() if self._current else None

    async def run(self, instruction: str, metadata: Optional[dict[str, Any]] = None) -> SessionOutcome:
        """Supersede any active session, then run a new one to a terminal state."""
        self._runs += 1
        try:
            async with self._swap_lock:
                await self._abort_current()
                session = ScriptSession(
                    session_id=new_session_id(),
                    instruction=instruction,
                    metadata=dict(metadata or {}),
                )
                self._current = session
                logger.info("session created id=%s", session.session_id)
        except BaseException:
            self._runs -= 1
            raise

        try:
            return await self._drive(session)
        finally:
            try:
                await self.transport.discard(session.session_id)
            finally:
                session._done.set()
                if self._current is session:
                    self._current = None
                self._runs -= 1

    async def cancel(self) -> Optional[str]:
        """Abort the active session, if any. Returns its id."""
        async with self._swap_lock:
            session = self._current
            await self._abort_current()
            return session.session_id if session else None

    async def _abort_current(self) -> None:
        session = self._current
        if session is None:
            return
        session.abort()
        await session._done.wait()
        if self._current is session:
            self._current = None

    def _finish(self, session: ScriptSession, status: SessionStatus, **kwargs: Any) -> SessionOutcome:
        session.status = status
        elapsed_ms = int((time.time() - session.created_at) * 1000)
        log = logger.info if status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED) else logger.warning
        log("session %s id=%s attempts=%d elapsed_ms=%d", status.value, session.session_id, session.attempts, elapsed_ms)
        return SessionOutcome(
            session_id=session.session_id,
            status=status,
            attempts=session.attempts,
            elapsed_ms=elapsed_ms,
            **kwargs,
        )

    async def _drive(self, session: ScriptSession) -> SessionOutcome:
        request = SessionRequest(
            session_id=session.session_id,
            instruction=session.instruction,
            timestamp=int(session.created_at * 1000),
            metadata=session.metadata,
        )

        session.status = SessionStatus.SENT
        try:
            await self.transport.submit(request)
        except SubmissionError as exc:
            return self._finish(session, SessionStatus.ERRORED, error=exc.message)
        except Exception as exc:
            logger.exception("submit failed unexpectedly session=%s", session.session_id)
            return self._finish(session, SessionStatus.ERRORED, error=f"Submission failed: {exc}")

        if session.aborted:
            return self._finish(session, SessionStatus.CANCELLED)

        session.status = SessionStatus.POLLING
        while session.attempts < self.schedule.max_attempts:
            if session.aborted:
                return self._finish(session, SessionStatus.CANCELLED)

            session.attempts += 1
            try:
                artifact = await self.transport.try_fetch(session.session_id)
            except TransportError as exc:
                logger.warning("poll %d failed for session=%s: %s", session.attempts, session.session_id, exc.message)
                artifact = None
            except Exception as exc:
                logger.exception("poll %d raised unexpectedly session=%s", session.attempts, session.session_id)
                return self._finish(session, SessionStatus.ERRORED, error=f"Response channel failed: {exc}")

            if session.aborted:
                return self._finish(session, SessionStatus.CANCELLED)

            if artifact is not None:
                envelope = parse_envelope(artifact, session.session_id)
                if envelope is not None:
                    if envelope.status.lower() == "error":
                        return self._finish(session, SessionStatus.ERRORED, error=envelope.payload or "Generator reported an error")
                    return self._finish(session, SessionStatus.COMPLETED, script=envelope.payload)

            if session.attempts >= self.schedule.max_attempts:
                break

            session.current_backoff_ms = self.schedule.delay_ms(session.attempts)
            if await session.sleep_or_abort(session.current_backoff_ms / 1000.0):
                return self._finish(session, SessionStatus.CANCELLED)

        return self._finish(
            session,
            SessionStatus.TIMED_OUT,
            error=f"No response after {session.attempts} attempts",
        )


class SessionRegistry:
    """Maps a caller-context key (client id, browser tab) to its SessionClient."""

    def __init__(self, transport: SessionTransport, schedule: Optional[PollSchedule] = None):
        self.transport = transport
        self.schedule = schedule
        self._clients: dict[str, SessionClient] = {}

    def client(self, context_id: str) -> SessionClient:
        existing = self._clients.get(context_id)
        if existing is None:
            existing = SessionClient(self.transport, self.schedule)
            self._clients[context_id] = existing
        return existing

    def peek(self, context_id: str) -> Optional[SessionClient]:
        return self._clients.get(context_id)

    def __len__(self) -> int:
        return len(self._clients)

    def release(self, context_id: str) -> None:
        """Forget the context's client once nothing is running on it."""
        existing = self._clients.get(context_id)
        if existing is not None and existing.idle:
            del self._clients[context_id]

    async def run(self, context_id: str, instruction: str, metadata: Optional[dict[str, Any]] = None) -> SessionOutcome:
        try:
            return await self.client(context_id).run(instruction, metadata)
        finally:
            self.release(context_id)

    async def cancel(self, context_id: str) -> Optional[str]:
        existing = self._clients.get(context_id)
        if existing is None:
            return None
        try:
            return await existing.cancel()
        finally:
            self.release(context_id)
