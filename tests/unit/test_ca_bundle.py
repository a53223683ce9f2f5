"""Tests for certmgmt.certificates.ca_bundle — CABundleManager and validate_bundle."""
from __future__ import annotations

import threading
from pathlib import Path

import pytest

from certmgmt.certificates.ca import DevelopmentCA
from certmgmt.certificates.ca_bundle import CABundleManager, validate_bundle
from certmgmt.certificates.models import Certificate, CertificateType
from certmgmt.errors import InvalidArgumentError, UnimplementedError


@pytest.fixture(scope="module")
def roots() -> list[Certificate]:
    return [DevelopmentCA.generate(common_name=f"Root {i}").certificate() for i in range(3)]


# ---------------------------------------------------------------------------
# validate_bundle
# ---------------------------------------------------------------------------


class TestValidateBundle:
    def test_returns_tuple_in_order(self, roots: list[Certificate]) -> None:
        bundle = validate_bundle(roots)
        assert isinstance(bundle, tuple)
        assert list(bundle) == roots

    def test_empty_is_allowed(self) -> None:
        assert validate_bundle([]) == ()

    def test_bad_pem_names_the_index(self, roots: list[Certificate]) -> None:
        bad = Certificate(type=CertificateType.CT_X509, certificate=b"garbage")
        with pytest.raises(InvalidArgumentError, match="#1"):
            validate_bundle([roots[0], bad])

    def test_non_x509_is_unimplemented(self, roots: list[Certificate]) -> None:
        other = Certificate(type=CertificateType.CT_UNKNOWN, certificate=roots[0].certificate)
        with pytest.raises(UnimplementedError):
            validate_bundle([other])


# ---------------------------------------------------------------------------
# CABundleManager, in memory
# ---------------------------------------------------------------------------


class TestManagerInMemory:
    def test_starts_empty(self) -> None:
        manager = CABundleManager()
        assert manager.current() == ()
        assert len(manager) == 0
        assert manager.generation == 0

    def test_replace_swaps_whole_bundle(self, roots: list[Certificate]) -> None:
        manager = CABundleManager()
        manager.replace(roots[:2])
        manager.replace(roots[2:])
        assert manager.current() == (roots[2],)
        assert manager.generation == 2

    def test_invalid_replace_keeps_previous(self, roots: list[Certificate]) -> None:
        manager = CABundleManager()
        manager.replace(roots)
        bad = Certificate(type=CertificateType.CT_X509, certificate=b"garbage")
        with pytest.raises(InvalidArgumentError):
            manager.replace([roots[0], bad])
        assert manager.current() == tuple(roots)
        assert manager.generation == 1

    def test_snapshot_unaffected_by_later_replace(self, roots: list[Certificate]) -> None:
        manager = CABundleManager()
        manager.replace(roots)
        snapshot = manager.current()
        manager.replace(roots[:1])
        assert snapshot == tuple(roots)

    def test_readers_never_see_partial_bundle(self, roots: list[Certificate]) -> None:
        manager = CABundleManager()
        bundle_a = tuple(roots[:1])
        bundle_b = tuple(roots[1:])
        manager.replace(bundle_a)
        seen: set[tuple[Certificate, ...]] = set()
        stop = threading.Event()

        def reader() -> None:
            while not stop.is_set():
                seen.add(manager.current())

        thread = threading.Thread(target=reader)
        thread.start()
        for i in range(200):
            manager.replace(bundle_a if i % 2 else bundle_b)
        stop.set()
        thread.join()

        assert seen <= {bundle_a, bundle_b}


# ---------------------------------------------------------------------------
# CABundleManager, persisted
# ---------------------------------------------------------------------------


class TestManagerPersisted:
    def test_replace_writes_pem_file(self, tmp_path: Path, roots: list[Certificate]) -> None:
        path = tmp_path / "trust" / "ca-bundle.pem"
        CABundleManager(persist_path=path).replace(roots)
        assert path.read_bytes().count(b"BEGIN CERTIFICATE") == 3
        assert not list(path.parent.glob(".tmp-*"))

    def test_reload_from_disk(self, tmp_path: Path, roots: list[Certificate]) -> None:
        path = tmp_path / "ca-bundle.pem"
        CABundleManager(persist_path=path).replace(roots)
        reloaded = CABundleManager(persist_path=path)
        assert [c.fingerprint() for c in reloaded.current()] == [c.fingerprint() for c in roots]

    def test_missing_file_starts_empty(self, tmp_path: Path) -> None:
        manager = CABundleManager(persist_path=tmp_path / "absent.pem")
        assert manager.current() == ()

    def test_failed_write_keeps_previous_bundle(
        self, tmp_path: Path, roots: list[Certificate], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "ca-bundle.pem"
        manager = CABundleManager(persist_path=path)
        manager.replace(roots[:1])

        def boom(src: str, dst: object) -> None:
            raise OSError("read-only filesystem")

        monkeypatch.setattr("certmgmt.certificates.ca_bundle.os.replace", boom)
        with pytest.raises(OSError):
            manager.replace(roots)

        assert manager.current() == (roots[0],)
        assert path.read_bytes().count(b"BEGIN CERTIFICATE") == 1
