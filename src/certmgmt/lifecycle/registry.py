"""TransactionRegistry — in-flight install/rotate transactions, one per identity.

The registry is the identity lock. ``acquire`` either registers a new
transaction or fails immediately with ``ALREADY_IN_PROGRESS``; it never
waits. The table is split into shards keyed by ``hash(certificate_id)``,
each with its own lock, so acquisitions on unrelated identities do not
contend on one global lock. Entries are removed on release, so the table
only ever holds identities with live transactions.
"""
from __future__ import annotations

import datetime
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from certmgmt.certificates.models import (
    CABundle,
    CSR,
    Certificate,
    CommittedCertificate,
    KeyPair,
)
from certmgmt.errors import AlreadyInProgressError

logger = logging.getLogger(__name__)


class TransactionMode(str, Enum):
    """Which streaming operation owns a transaction."""

    INSTALL = "install"
    ROTATE = "rotate"


class TransactionState(str, Enum):
    """Lifecycle engine states."""

    IDLE = "idle"
    AWAITING_MATERIAL = "awaiting_material"
    STAGED = "staged"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"

    @property
    def terminal(self) -> bool:
        return self in (TransactionState.COMMITTED, TransactionState.ROLLED_BACK)


@dataclass
class Transaction:
    """Uncommitted state of one install or rotate session.

    Parameters
    ----------
    certificate_id:
        The identity this transaction holds.
    mode:
        INSTALL or ROTATE.
    state:
        Current engine state.
    staged_csr:
        CSR returned to the caller, if the target generated the key.
    staged_certificate:
        Certificate loaded but not yet committed.
    staged_key_pair:
        Key pair generated on the target or supplied by the caller.
    staged_ca_bundle:
        CA bundle to commit alongside the certificate, if any.
    previous:
        Snapshot of the committed entry at the start of a rotation.
    created_at:
        UTC datetime the transaction was acquired.
    """

    certificate_id: str
    mode: TransactionMode
    state: TransactionState = TransactionState.IDLE
    staged_csr: CSR | None = None
    staged_certificate: Certificate | None = None
    staged_key_pair: KeyPair | None = None
    staged_ca_bundle: CABundle | None = None
    previous: CommittedCertificate | None = None
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def discard_staged(self) -> None:
        """Drop all staged material."""
        self.staged_csr = None
        self.staged_certificate = None
        self.staged_key_pair = None
        self.staged_ca_bundle = None
        self.previous = None


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # None marks a short exclusive hold that has no transaction (revoke).
        self.entries: dict[str, Transaction | None] = {}


class TransactionRegistry:
    """Per-identity exclusive registry of in-flight transactions.

    Parameters
    ----------
    shards:
        Number of independently locked partitions.
    """

    def __init__(self, shards: int = 64) -> None:
        if shards < 1:
            raise ValueError(f"shards must be positive, got {shards}")
        self._shards = tuple(_Shard() for _ in range(shards))

    def _shard(self, certificate_id: str) -> _Shard:
        return self._shards[hash(certificate_id) % len(self._shards)]

    @staticmethod
    def _in_progress(certificate_id: str, entry: Transaction | None) -> AlreadyInProgressError:
        if entry is None:
            return AlreadyInProgressError(certificate_id, holder="revocation")
        return AlreadyInProgressError(certificate_id, holder=f"{entry.mode.value} transaction")

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def acquire(self, certificate_id: str, mode: TransactionMode) -> Transaction:
        """Register a new transaction for *certificate_id*.

        Raises
        ------
        AlreadyInProgressError
            If the identity is already held.
        """
        shard = self._shard(certificate_id)
        with shard.lock:
            if certificate_id in shard.entries:
                raise self._in_progress(certificate_id, shard.entries[certificate_id])
            transaction = Transaction(certificate_id=certificate_id, mode=mode)
            shard.entries[certificate_id] = transaction
        logger.debug("Acquired %s transaction for %r", mode.value, certificate_id)
        return transaction

    def release(self, certificate_id: str, transaction: Transaction | None = None) -> bool:
        """Release the identity. Idempotent.

        Parameters
        ----------
        certificate_id:
            The identity to release.
        transaction:
            If given, the entry is only removed while it still belongs to this
            transaction, so a stale session cannot release a newer one.

        Returns
        -------
        bool
            True if an entry was removed.
        """
        shard = self._shard(certificate_id)
        with shard.lock:
            if certificate_id not in shard.entries:
                return False
            if transaction is not None and shard.entries[certificate_id] is not transaction:
                return False
            del shard.entries[certificate_id]
        logger.debug("Released %r", certificate_id)
        return True

    @contextmanager
    def hold(self, certificate_id: str) -> Iterator[None]:
        """Hold the identity exclusively for the duration of the block.

        Used by operations that must not interleave with a transaction, such
        as revocation.

        Raises
        ------
        AlreadyInProgressError
            If the identity is already held.
        """
        shard = self._shard(certificate_id)
        with shard.lock:
            if certificate_id in shard.entries:
                raise self._in_progress(certificate_id, shard.entries[certificate_id])
            shard.entries[certificate_id] = None
        try:
            yield
        finally:
            with shard.lock:
                if certificate_id in shard.entries and shard.entries[certificate_id] is None:
                    del shard.entries[certificate_id]

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get(self, certificate_id: str) -> Transaction | None:
        """Return the in-flight transaction for *certificate_id*, or None."""
        shard = self._shard(certificate_id)
        with shard.lock:
            return shard.entries.get(certificate_id)

    def is_held(self, certificate_id: str) -> bool:
        shard = self._shard(certificate_id)
        with shard.lock:
            return certificate_id in shard.entries

    def transactions(self) -> list[Transaction]:
        """Return a snapshot of all in-flight transactions."""
        result: list[Transaction] = []
        for shard in self._shards:
            with shard.lock:
                result.extend(t for t in shard.entries.values() if t is not None)
        return sorted(result, key=lambda t: t.certificate_id)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def __contains__(self, certificate_id: object) -> bool:
        return isinstance(certificate_id, str) and self.is_held(certificate_id)


__all__ = [
    "Transaction",
    "TransactionMode",
    "TransactionRegistry",
    "TransactionState",
]
