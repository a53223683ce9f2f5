"""HTTP stand-in for the bidirectional install/rotate stream.

A client opens a session, posts one step per request and either finishes
with a finalize step or cancels the session. A session that is not touched
for ``idle_timeout`` seconds is treated as a dropped connection and rolled
back the next time the manager is used. Sessions end (and are forgotten) on
commit, on a failed step, on cancel and on expiry.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from certmgmt.errors import CertificateNotFoundError
from certmgmt.lifecycle.engine import LifecycleEngine
from certmgmt.lifecycle.messages import StepRequest, StepResponse
from certmgmt.lifecycle.registry import TransactionMode
from certmgmt.service import CertificateManagementService

logger = logging.getLogger(__name__)


@dataclass
class _Session:
    engine: LifecycleEngine
    last_seen: float


class SessionManager:
    """Tracks open HTTP sessions.

    Parameters
    ----------
    service:
        Service that creates the engines.
    idle_timeout:
        Seconds of inactivity after which a session is rolled back.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        service: CertificateManagementService,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._service = service
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, _Session] = {}
        self._lock = threading.Lock()

    def start(self, mode: TransactionMode) -> tuple[str, LifecycleEngine]:
        """Open a session and return its id and engine."""
        self.reap_expired()
        session_id = uuid.uuid4().hex
        engine = self._service.new_engine(mode)
        with self._lock:
            self._sessions[session_id] = _Session(engine=engine, last_seen=self._clock())
        logger.debug("Opened %s session %s", mode.value, session_id)
        return session_id, engine

    def step(self, session_id: str, step: StepRequest) -> tuple[LifecycleEngine, StepResponse]:
        """Apply one step to an open session.

        Raises
        ------
        CertificateNotFoundError
            If the session does not exist or has expired.
        CertManagementError
            If the step fails; the session is closed and rolled back.
        """
        self.reap_expired()
        session = self._get(session_id)
        try:
            response = session.engine.handle(step)
        finally:
            if session.engine.state.terminal:
                self._forget(session_id)
            else:
                session.last_seen = self._clock()
        return session.engine, response

    def cancel(self, session_id: str) -> LifecycleEngine:
        """Cancel a session, rolling back anything it staged."""
        session = self._get(session_id)
        self._forget(session_id)
        session.engine.abort(reason="session cancelled by client")
        return session.engine

    def reap_expired(self) -> int:
        """Roll back sessions idle for longer than the timeout."""
        now = self._clock()
        with self._lock:
            expired = [
                (sid, s)
                for sid, s in self._sessions.items()
                if now - s.last_seen > self._idle_timeout
            ]
            for sid, _ in expired:
                del self._sessions[sid]
        for sid, session in expired:
            logger.info("Session %s idle for over %.0fs; rolling back", sid, self._idle_timeout)
            session.engine.abort(reason="session idle timeout")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _get(self, session_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise CertificateNotFoundError(f"Unknown or expired session {session_id!r}.")
        return session

    def _forget(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


__all__ = ["SessionManager"]
