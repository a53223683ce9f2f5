"""Tests for certmgmt.server.routes."""
from __future__ import annotations

from pathlib import Path

import pytest

from certmgmt.certificates.ca import DevelopmentCA
from certmgmt.certificates.models import CSR, CertificateType
from certmgmt.config import CertManagerConfig
from certmgmt.server import routes
from certmgmt.server.sessions import SessionManager
from certmgmt.service import CertificateManagementService


@pytest.fixture(autouse=True)
def reset_server_state() -> None:
    """Reset module-level state before each test."""
    routes.reset_state()


@pytest.fixture(scope="module")
def ca() -> DevelopmentCA:
    return DevelopmentCA.generate()


def _start(mode: str = "install") -> str:
    status, data = routes.handle_start_session({"mode": mode})
    assert status == 201
    return str(data["session_id"])


def _pem(data: bytes) -> str:
    return data.decode("utf-8")


def _install_with_client_key(ca: DevelopmentCA, certificate_id: str) -> None:
    cert, key_pair = ca.issue(certificate_id)
    session_id = _start()
    status, _ = routes.handle_session_step(
        session_id,
        {
            "load_certificate": {
                "certificate_id": certificate_id,
                "certificate": {"certificate": _pem(cert.certificate)},
                "key_pair": {"private_key": _pem(key_pair.private_key)},
            }
        },
    )
    assert status == 200
    status, data = routes.handle_session_step(session_id, {"finalize": {}})
    assert status == 200
    assert data["finalized"] is True


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestStartSession:
    def test_returns_idle_session(self) -> None:
        status, data = routes.handle_start_session({"mode": "rotate"})
        assert status == 201
        assert data["mode"] == "rotate"
        assert data["state"] == "idle"
        assert data["session_id"]

    def test_rejects_unknown_mode(self) -> None:
        status, data = routes.handle_start_session({"mode": "upsert"})
        assert status == 422
        assert "error" in data

    def test_rejects_missing_mode(self) -> None:
        status, _ = routes.handle_start_session({})
        assert status == 422


class TestSessionSteps:
    def test_target_generated_key_flow(self, ca: DevelopmentCA) -> None:
        session_id = _start()

        status, data = routes.handle_session_step(
            session_id,
            {"generate_csr": {"certificate_id": "dev-1", "csr_params": {"common_name": "dev-1"}}},
        )
        assert status == 200
        assert data["state"] == "awaiting_material"
        assert data["certificate_id"] == "dev-1"
        csr_pem = data["generated_csr"]["csr"]  # type: ignore[index]
        assert "CERTIFICATE REQUEST" in csr_pem

        signed = ca.sign_csr(CSR(type=CertificateType.CT_X509, csr=csr_pem.encode("utf-8")))
        status, data = routes.handle_session_step(
            session_id,
            {
                "load_certificate": {
                    "certificate": {"certificate": _pem(signed.certificate)},
                    "ca_certificates": [{"certificate": _pem(ca.certificate().certificate)}],
                }
            },
        )
        assert status == 200
        assert data["certificate_loaded"] is True
        assert data["state"] == "staged"

        status, data = routes.handle_session_step(session_id, {"finalize": {}})
        assert status == 200
        assert data["state"] == "committed"

        _, listing = routes.handle_get_certificates()
        assert [c["certificate_id"] for c in listing["certificate_info"]] == ["dev-1"]  # type: ignore[index]
        _, bundle = routes.handle_get_ca_bundle()
        assert len(bundle["ca_certificates"]) == 1  # type: ignore[arg-type]

    def test_client_key_flow(self, ca: DevelopmentCA) -> None:
        _install_with_client_key(ca, "dev-1")
        _, health = routes.handle_health()
        assert health["certificate_count"] == 1

    def test_step_requires_exactly_one_field(self) -> None:
        session_id = _start()
        status, data = routes.handle_session_step(
            session_id, {"finalize": {}, "generate_csr": {"certificate_id": "dev-1"}}
        )
        assert status == 422
        status, _ = routes.handle_session_step(session_id, {})
        assert status == 422

    def test_unknown_session_is_404(self) -> None:
        status, data = routes.handle_session_step("deadbeef", {"finalize": {}})
        assert status == 404
        assert data["code"] == "NOT_FOUND"

    def test_failed_step_closes_session(self) -> None:
        session_id = _start()
        status, data = routes.handle_session_step(session_id, {"finalize": {}})
        assert status == 412
        assert data["code"] == "FAILED_PRECONDITION"

        status, _ = routes.handle_session_step(session_id, {"finalize": {}})
        assert status == 404

    def test_install_existing_is_409(self, ca: DevelopmentCA) -> None:
        _install_with_client_key(ca, "dev-1")
        session_id = _start()
        status, data = routes.handle_session_step(
            session_id, {"generate_csr": {"certificate_id": "dev-1"}}
        )
        assert status == 409
        assert data["code"] == "ALREADY_EXISTS"

    def test_concurrent_session_is_409(self) -> None:
        first = _start()
        second = _start()
        routes.handle_session_step(first, {"generate_csr": {"certificate_id": "dev-2"}})
        status, data = routes.handle_session_step(
            second, {"generate_csr": {"certificate_id": "dev-2"}}
        )
        assert status == 409
        assert data["code"] == "ALREADY_IN_PROGRESS"

    def test_rotate_missing_is_404(self) -> None:
        session_id = _start("rotate")
        status, data = routes.handle_session_step(
            session_id, {"generate_csr": {"certificate_id": "dev-9"}}
        )
        assert status == 404
        assert data["code"] == "NOT_FOUND"

    def test_unsupported_key_is_501(self) -> None:
        session_id = _start()
        status, data = routes.handle_session_step(
            session_id,
            {"generate_csr": {"certificate_id": "dev-1", "csr_params": {"min_key_size": 65536}}},
        )
        assert status == 501
        assert data["code"] == "UNIMPLEMENTED"

    def test_invalid_certificate_is_400(self) -> None:
        session_id = _start()
        status, data = routes.handle_session_step(
            session_id,
            {
                "load_certificate": {
                    "certificate_id": "dev-1",
                    "certificate": {"certificate": "not pem"},
                }
            },
        )
        assert status == 400
        assert data["code"] == "INVALID_ARGUMENT"


class TestCancelSession:
    def test_cancel_rolls_back_and_frees_identity(self) -> None:
        session_id = _start()
        routes.handle_session_step(session_id, {"generate_csr": {"certificate_id": "dev-1"}})

        status, data = routes.handle_cancel_session(session_id)
        assert status == 200
        assert data["state"] == "rolled_back"
        assert data["certificate_id"] == "dev-1"

        _, health = routes.handle_health()
        assert health["in_flight"] == 0

    def test_cancel_unknown_is_404(self) -> None:
        status, _ = routes.handle_cancel_session("deadbeef")
        assert status == 404


# ---------------------------------------------------------------------------
# Unary operations
# ---------------------------------------------------------------------------


class TestRevoke:
    def test_revoke_partitions_result(self, ca: DevelopmentCA) -> None:
        _install_with_client_key(ca, "dev-1")
        _install_with_client_key(ca, "dev-2")
        session_id = _start("rotate")
        routes.handle_session_step(session_id, {"generate_csr": {"certificate_id": "dev-2"}})

        status, data = routes.handle_revoke_certificates({"certificate_id": ["dev-1", "dev-2"]})

        assert status == 200
        assert data["revoked_certificate_id"] == ["dev-1"]
        errors = data["certificate_revocation_error"]
        assert errors[0]["certificate_id"] == "dev-2"  # type: ignore[index]
        assert errors[0]["code"] == "FAILED_PRECONDITION"  # type: ignore[index]

    def test_revoke_requires_list(self) -> None:
        status, _ = routes.handle_revoke_certificates({"certificate_id": "dev-1"})
        assert status == 422


class TestCABundleRoutes:
    def test_load_and_get(self, ca: DevelopmentCA) -> None:
        body = {"ca_certificates": [{"certificate": _pem(ca.certificate().certificate)}]}
        status, data = routes.handle_load_ca_bundle(body)
        assert status == 200
        assert len(data["ca_certificates"]) == 1  # type: ignore[arg-type]

        _, current = routes.handle_get_ca_bundle()
        assert current == data

    def test_empty_bundle_is_400(self) -> None:
        status, data = routes.handle_load_ca_bundle({"ca_certificates": []})
        assert status == 400
        assert data["code"] == "INVALID_ARGUMENT"

    def test_garbage_bundle_is_400(self) -> None:
        status, _ = routes.handle_load_ca_bundle({"ca_certificates": [{"certificate": "junk"}]})
        assert status == 400


class TestCanGenerateCSR:
    def test_supported(self) -> None:
        status, data = routes.handle_can_generate_csr({"key_type": "KT_RSA", "key_size": 2048})
        assert status == 200
        assert data["can_generate"] is True

    def test_unsupported_certificate_type(self) -> None:
        _, data = routes.handle_can_generate_csr({"certificate_type": "CT_UNKNOWN"})
        assert data["can_generate"] is False

    def test_invalid_key_type_is_422(self) -> None:
        status, _ = routes.handle_can_generate_csr({"key_type": "KT_ED25519"})
        assert status == 422


class TestHealth:
    def test_health(self) -> None:
        status, data = routes.handle_health()
        assert status == 200
        assert data["status"] == "ok"
        assert data["service"] == "certmgmt"
        assert data["certificate_count"] == 0
        assert data["ca_bundle_size"] == 0


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestIdleSessions:
    @pytest.fixture()
    def clock(self) -> _Clock:
        clock = _Clock()
        service = CertificateManagementService()
        routes.reset_state(service, SessionManager(service, idle_timeout=10.0, clock=clock))
        return clock

    def test_revoke_rolls_back_abandoned_rotation(self, clock: _Clock, ca: DevelopmentCA) -> None:
        _install_with_client_key(ca, "dev-1")
        session_id = _start("rotate")
        routes.handle_session_step(session_id, {"generate_csr": {"certificate_id": "dev-1"}})

        clock.now += 11
        status, data = routes.handle_revoke_certificates({"certificate_id": ["dev-1"]})

        assert status == 200
        assert data["revoked_certificate_id"] == ["dev-1"]
        assert data["certificate_revocation_error"] == []
        status, _ = routes.handle_session_step(session_id, {"finalize": {}})
        assert status == 404

    def test_health_reports_abandoned_session_released(self, clock: _Clock) -> None:
        session_id = _start()
        routes.handle_session_step(session_id, {"generate_csr": {"certificate_id": "dev-1"}})
        _, health = routes.handle_health()
        assert health["in_flight"] == 1

        clock.now += 11
        _, health = routes.handle_health()
        assert health["in_flight"] == 0

    def test_active_session_survives(self, clock: _Clock, ca: DevelopmentCA) -> None:
        _install_with_client_key(ca, "dev-1")
        session_id = _start("rotate")
        routes.handle_session_step(session_id, {"generate_csr": {"certificate_id": "dev-1"}})

        clock.now += 5
        _, data = routes.handle_revoke_certificates({"certificate_id": ["dev-1"]})

        assert data["revoked_certificate_id"] == []
        assert data["certificate_revocation_error"][0]["code"] == "FAILED_PRECONDITION"  # type: ignore[index]


class TestConfigure:
    def test_configure_uses_filesystem_store(self, tmp_path: Path, ca: DevelopmentCA) -> None:
        routes.configure(CertManagerConfig(store_dir=tmp_path / "store"))
        _install_with_client_key(ca, "dev-1")
        assert (tmp_path / "store" / "dev-1.json").exists()
