"""Tests for certmgmt.lifecycle.registry — TransactionRegistry."""
from __future__ import annotations

import threading

import pytest

from certmgmt.errors import AlreadyInProgressError, StatusCode
from certmgmt.lifecycle.registry import (
    Transaction,
    TransactionMode,
    TransactionRegistry,
    TransactionState,
)


@pytest.fixture()
def registry() -> TransactionRegistry:
    return TransactionRegistry(shards=8)


class TestAcquire:
    def test_returns_idle_transaction(self, registry: TransactionRegistry) -> None:
        transaction = registry.acquire("dev-1", TransactionMode.INSTALL)
        assert transaction.certificate_id == "dev-1"
        assert transaction.mode == TransactionMode.INSTALL
        assert transaction.state == TransactionState.IDLE
        assert "dev-1" in registry

    def test_second_acquire_fails_fast(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.INSTALL)
        with pytest.raises(AlreadyInProgressError) as exc_info:
            registry.acquire("dev-1", TransactionMode.ROTATE)
        assert exc_info.value.code == StatusCode.ALREADY_IN_PROGRESS
        assert exc_info.value.certificate_id == "dev-1"

    def test_distinct_identities_independent(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.INSTALL)
        registry.acquire("dev-2", TransactionMode.INSTALL)
        assert len(registry) == 2

    def test_rejects_zero_shards(self) -> None:
        with pytest.raises(ValueError):
            TransactionRegistry(shards=0)

    def test_concurrent_acquire_has_single_winner(self) -> None:
        registry = TransactionRegistry(shards=2)
        barrier = threading.Barrier(16)
        winners: list[Transaction] = []
        losers: list[AlreadyInProgressError] = []
        lock = threading.Lock()

        def contend() -> None:
            barrier.wait()
            try:
                transaction = registry.acquire("dev-2", TransactionMode.INSTALL)
            except AlreadyInProgressError as exc:
                with lock:
                    losers.append(exc)
            else:
                with lock:
                    winners.append(transaction)

        threads = [threading.Thread(target=contend) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1
        assert len(losers) == 15


class TestRelease:
    def test_release_frees_identity(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.INSTALL)
        assert registry.release("dev-1") is True
        assert "dev-1" not in registry
        registry.acquire("dev-1", TransactionMode.INSTALL)

    def test_release_is_idempotent(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.INSTALL)
        assert registry.release("dev-1") is True
        assert registry.release("dev-1") is False
        assert registry.release("never-held") is False

    def test_stale_owner_cannot_release_newer_transaction(
        self, registry: TransactionRegistry
    ) -> None:
        old = registry.acquire("dev-1", TransactionMode.ROTATE)
        registry.release("dev-1", old)
        new = registry.acquire("dev-1", TransactionMode.ROTATE)

        assert registry.release("dev-1", old) is False
        assert registry.get("dev-1") is new


class TestHold:
    def test_hold_blocks_acquire(self, registry: TransactionRegistry) -> None:
        with registry.hold("dev-1"):
            assert registry.is_held("dev-1")
            with pytest.raises(AlreadyInProgressError):
                registry.acquire("dev-1", TransactionMode.INSTALL)
        assert not registry.is_held("dev-1")

    def test_hold_fails_when_transaction_in_flight(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.ROTATE)
        with pytest.raises(AlreadyInProgressError):
            with registry.hold("dev-1"):
                pass
        assert registry.get("dev-1") is not None

    def test_in_progress_error_names_holder(self, registry: TransactionRegistry) -> None:
        registry.acquire("dev-1", TransactionMode.ROTATE)
        with pytest.raises(AlreadyInProgressError) as exc_info:
            registry.acquire("dev-1", TransactionMode.INSTALL)
        assert exc_info.value.holder == "rotate transaction"

        with registry.hold("dev-2"):
            with pytest.raises(AlreadyInProgressError) as exc_info:
                with registry.hold("dev-2"):
                    pass
        assert exc_info.value.holder == "revocation"

    def test_hold_released_on_exception(self, registry: TransactionRegistry) -> None:
        with pytest.raises(RuntimeError):
            with registry.hold("dev-1"):
                raise RuntimeError("boom")
        assert not registry.is_held("dev-1")

    def test_hold_not_listed_as_transaction(self, registry: TransactionRegistry) -> None:
        with registry.hold("dev-1"):
            assert registry.transactions() == []
            assert registry.get("dev-1") is None
            assert len(registry) == 1


class TestQuery:
    def test_transactions_sorted_snapshot(self, registry: TransactionRegistry) -> None:
        registry.acquire("b", TransactionMode.INSTALL)
        registry.acquire("a", TransactionMode.ROTATE)
        assert [t.certificate_id for t in registry.transactions()] == ["a", "b"]

    def test_contains_rejects_non_strings(self, registry: TransactionRegistry) -> None:
        assert 42 not in registry


class TestTransaction:
    def test_discard_staged(self) -> None:
        transaction = Transaction(certificate_id="dev-1", mode=TransactionMode.INSTALL)
        transaction.staged_ca_bundle = ()
        transaction.discard_staged()
        assert transaction.staged_ca_bundle is None
        assert transaction.staged_certificate is None

    def test_terminal_states(self) -> None:
        assert TransactionState.COMMITTED.terminal
        assert TransactionState.ROLLED_BACK.terminal
        assert not TransactionState.STAGED.terminal
