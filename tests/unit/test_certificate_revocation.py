"""Tests for certmgmt.certificates.revocation — RevocationService."""
from __future__ import annotations

from pathlib import Path

import pytest

from certmgmt.audit import LifecycleAuditLogger
from certmgmt.certificates.ca import DevelopmentCA
from certmgmt.certificates.models import Certificate, CommittedCertificate
from certmgmt.certificates.revocation import RevocationResult, RevocationService
from certmgmt.certificates.store import FilesystemCertStore, InMemoryCertStore
from certmgmt.errors import StatusCode
from certmgmt.lifecycle.registry import TransactionMode, TransactionRegistry


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def certificate() -> Certificate:
    cert, _ = DevelopmentCA.generate().issue("device")
    return cert


@pytest.fixture()
def store(certificate: Certificate) -> InMemoryCertStore:
    store = InMemoryCertStore()
    for cid in ("dev-1", "dev-2", "dev-3"):
        store.put(CommittedCertificate(certificate_id=cid, certificate=certificate))
    return store


@pytest.fixture()
def registry() -> TransactionRegistry:
    return TransactionRegistry(shards=4)


@pytest.fixture()
def audit() -> LifecycleAuditLogger:
    return LifecycleAuditLogger()


@pytest.fixture()
def service(
    store: InMemoryCertStore, registry: TransactionRegistry, audit: LifecycleAuditLogger
) -> RevocationService:
    return RevocationService(store, registry, audit=audit)


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


class TestQuery:
    def test_lists_all_sorted(self, service: RevocationService) -> None:
        assert [i.certificate_id for i in service.query()] == ["dev-1", "dev-2", "dev-3"]

    def test_empty_store(self, registry: TransactionRegistry) -> None:
        assert RevocationService(InMemoryCertStore(), registry).query() == []


# ---------------------------------------------------------------------------
# revoke
# ---------------------------------------------------------------------------


class TestRevoke:
    def test_revokes_present_identity(
        self, service: RevocationService, store: InMemoryCertStore
    ) -> None:
        result = service.revoke(["dev-1"])
        assert result.revoked == ["dev-1"]
        assert result.ok
        assert store.get("dev-1") is None
        assert store.get("dev-2") is not None

    def test_absent_identity_counts_as_revoked(self, service: RevocationService) -> None:
        result = service.revoke(["never-installed"])
        assert result.revoked == ["never-installed"]
        assert result.errors == []

    def test_duplicates_processed_once(self, service: RevocationService) -> None:
        result = service.revoke(["dev-1", "dev-1", "dev-2"])
        assert result.revoked == ["dev-1", "dev-2"]

    def test_in_flight_identity_fails_precondition(
        self,
        service: RevocationService,
        store: InMemoryCertStore,
        registry: TransactionRegistry,
    ) -> None:
        registry.acquire("dev-2", TransactionMode.ROTATE)

        result = service.revoke(["dev-1", "dev-2", "dev-3"])

        assert result.revoked == ["dev-1", "dev-3"]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.certificate_id == "dev-2"
        assert error.code == StatusCode.FAILED_PRECONDITION
        assert store.get("dev-2") is not None
        assert "rotate transaction" in error.error_message

    def test_install_in_flight_for_absent_identity_counts_as_revoked(
        self, service: RevocationService, registry: TransactionRegistry
    ) -> None:
        transaction = registry.acquire("dev-9", TransactionMode.INSTALL)

        result = service.revoke(["dev-9"])

        assert result.revoked == ["dev-9"]
        assert result.errors == []
        assert registry.get("dev-9") is transaction

    def test_concurrent_revoke_names_revocation(
        self, service: RevocationService, store: InMemoryCertStore, registry: TransactionRegistry
    ) -> None:
        with registry.hold("dev-1"):
            result = service.revoke(["dev-1"])

        error = result.errors[0]
        assert error.code == StatusCode.FAILED_PRECONDITION
        assert "revocation" in error.error_message
        assert "transaction" not in error.error_message
        assert store.get("dev-1") is not None

    def test_hold_is_released_after_revoke(
        self, service: RevocationService, registry: TransactionRegistry
    ) -> None:
        service.revoke(["dev-1", "ghost"])
        assert len(registry) == 0

    def test_storage_failure_is_internal(
        self, registry: TransactionRegistry, certificate: Certificate
    ) -> None:
        class BrokenStore(InMemoryCertStore):
            def delete(self, certificate_id: str) -> None:
                raise OSError("read-only filesystem")

        store = BrokenStore()
        store.put(CommittedCertificate(certificate_id="dev-1", certificate=certificate))
        result = RevocationService(store, registry).revoke(["dev-1"])

        assert result.revoked == []
        assert result.errors[0].code == StatusCode.INTERNAL
        assert len(registry) == 0

    def test_filesystem_store(
        self, registry: TransactionRegistry, certificate: Certificate, tmp_path: Path
    ) -> None:
        store = FilesystemCertStore(base_dir=tmp_path)
        store.put(CommittedCertificate(certificate_id="dev-1", certificate=certificate))
        result = RevocationService(store, registry).revoke(["dev-1"])
        assert result.revoked == ["dev-1"]
        assert not (tmp_path / "dev-1.json").exists()

    def test_outcomes_are_audited(
        self,
        service: RevocationService,
        registry: TransactionRegistry,
        audit: LifecycleAuditLogger,
    ) -> None:
        registry.acquire("dev-2", TransactionMode.INSTALL)
        service.revoke(["dev-1", "dev-2"])
        events = [e["event_type"] for e in audit.read_log()]
        assert events == ["certificate_revoked", "certificate_revocation_failed"]


class TestRevocationResult:
    def test_to_dict_uses_wire_names(self, service: RevocationService) -> None:
        data = service.revoke(["dev-1"]).to_dict()
        assert data == {
            "revoked_certificate_id": ["dev-1"],
            "certificate_revocation_error": [],
        }

    def test_empty_result_is_ok(self) -> None:
        assert RevocationResult().ok
