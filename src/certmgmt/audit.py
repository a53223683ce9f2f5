"""LifecycleAuditLogger — JSONL audit trail of certificate lifecycle events.

Every state change that matters for incident review (transaction start,
CSR generation, staging, commit, rollback, CA bundle replacement,
revocation) is appended as a single JSON line to the configured log file.

If no file path is configured the logger emits to an in-memory buffer
that can be drained via :meth:`drain_buffer`.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class AuditEvent:
    """A single auditable lifecycle event.

    Parameters
    ----------
    event_type:
        Short snake_case string identifying the event (e.g. "transaction_committed").
    certificate_id:
        The certificate identity involved, or "" for identity-less events.
    details:
        Arbitrary key-value metadata about the event.
    timestamp:
        UTC datetime of the event. Defaults to now.
    """

    event_type: str
    certificate_id: str
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "certificate_id": self.certificate_id,
            "details": self.details,
        }


class LifecycleAuditLogger:
    """Append-only JSONL audit logger.

    Thread-safe. Each call to :meth:`log` appends one JSON line to the
    configured file path (or to the in-memory buffer if no path is set).

    Parameters
    ----------
    log_path:
        Path to the JSONL log file. Parent directories are created
        automatically. If None, events are buffered in memory only.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._buffer: list[str] = []
        self._lock = threading.Lock()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Core logging
    # ------------------------------------------------------------------

    def log(self, event: AuditEvent) -> None:
        """Append an audit event to the log."""
        line = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is not None:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            else:
                self._buffer.append(line)

    def log_event(self, event_type: str, certificate_id: str = "", **details: object) -> None:
        """Log a simple event without constructing an AuditEvent."""
        self.log(AuditEvent(event_type=event_type, certificate_id=certificate_id, details=dict(details)))

    # ------------------------------------------------------------------
    # Convenience event loggers
    # ------------------------------------------------------------------

    def log_transaction_started(self, certificate_id: str, mode: str) -> None:
        self.log_event("transaction_started", certificate_id, mode=mode)

    def log_csr_generated(self, certificate_id: str, key_type: str) -> None:
        self.log_event("csr_generated", certificate_id, key_type=key_type)

    def log_certificate_staged(
        self, certificate_id: str, fingerprint: str, with_ca_bundle: bool
    ) -> None:
        self.log_event(
            "certificate_staged",
            certificate_id,
            fingerprint=fingerprint,
            with_ca_bundle=with_ca_bundle,
        )

    def log_committed(self, certificate_id: str, mode: str, fingerprint: str) -> None:
        self.log_event("transaction_committed", certificate_id, mode=mode, fingerprint=fingerprint)

    def log_rolled_back(self, certificate_id: str, mode: str, reason: str) -> None:
        self.log_event("transaction_rolled_back", certificate_id, mode=mode, reason=reason)

    def log_ca_bundle_replaced(self, size: int, certificate_id: str = "") -> None:
        self.log_event("ca_bundle_replaced", certificate_id, size=size)

    def log_revocation(self, certificate_id: str, success: bool, reason: str = "") -> None:
        self.log_event(
            "certificate_revoked" if success else "certificate_revocation_failed",
            certificate_id,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def drain_buffer(self) -> list[str]:
        """Return and clear the in-memory event buffer."""
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
        return events

    def read_log(self, tail: int | None = None) -> list[dict[str, object]]:
        """Read events, oldest first.

        Parameters
        ----------
        tail:
            If provided, return only the last *tail* events.
        """
        if self._log_path is None or not self._log_path.exists():
            with self._lock:
                lines = list(self._buffer)
        else:
            with self._lock:
                lines = self._log_path.read_text(encoding="utf-8").splitlines()

        parsed: list[dict[str, object]] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            try:
                parsed.append(json.loads(stripped))
            except json.JSONDecodeError:
                continue

        if tail is not None and tail >= 0:
            return parsed[-tail:] if tail else []
        return parsed


__all__ = ["AuditEvent", "LifecycleAuditLogger"]
