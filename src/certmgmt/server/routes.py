"""Route handler functions for the certmgmt HTTP server.

Each function accepts parsed request data and returns a tuple of
(status_code, response_dict). The HTTP handler in app.py calls these
functions and serializes the results to JSON.
"""
from __future__ import annotations

from pydantic import ValidationError

from certmgmt import __version__
from certmgmt.config import CertManagerConfig, build_service
from certmgmt.errors import CertManagementError, StatusCode
from certmgmt.lifecycle.messages import FinalizeResponse, GenerateCSRResponse, LoadCertificateResponse
from certmgmt.server.models import (
    CABundleResponse,
    CSRModel,
    CanGenerateCSRRequest,
    CanGenerateCSRResponse,
    CertificateInfoModel,
    CertificateModel,
    ErrorResponse,
    GetCertificatesResponse,
    HealthResponse,
    LoadCABundleRequest,
    RevokeCertificatesRequest,
    RevokeCertificatesResponse,
    SessionResponse,
    StartSessionRequest,
    StepModel,
    StepResultResponse,
)
from certmgmt.server.sessions import SessionManager
from certmgmt.service import CertificateManagementService

HTTP_STATUS: dict[StatusCode, int] = {
    StatusCode.OK: 200,
    StatusCode.ALREADY_IN_PROGRESS: 409,
    StatusCode.ALREADY_EXISTS: 409,
    StatusCode.NOT_FOUND: 404,
    StatusCode.UNIMPLEMENTED: 501,
    StatusCode.FAILED_PRECONDITION: 412,
    StatusCode.INVALID_ARGUMENT: 400,
    StatusCode.INTERNAL: 500,
}


# Module-level shared state
_service: CertificateManagementService = CertificateManagementService()
_sessions: SessionManager = SessionManager(_service)


def configure(config: CertManagerConfig) -> None:
    """Replace the shared service with one built from *config*."""
    global _service, _sessions
    _service = build_service(config)
    _sessions = SessionManager(_service, idle_timeout=config.session_idle_timeout_seconds)


def reset_state(
    service: CertificateManagementService | None = None,
    sessions: SessionManager | None = None,
) -> None:
    """Reset all shared state — used in tests and for clean restarts."""
    global _service, _sessions
    _service = service if service is not None else CertificateManagementService()
    _sessions = sessions if sessions is not None else SessionManager(_service)


def _validation_error(exc: ValidationError) -> tuple[int, dict[str, object]]:
    return 422, ErrorResponse(error="Validation error", detail=str(exc)).model_dump()


def _reap_idle_sessions() -> None:
    """Roll back sessions whose client went quiet before touching shared state."""
    _sessions.reap_expired()


def _error(exc: CertManagementError) -> tuple[int, dict[str, object]]:
    return HTTP_STATUS[exc.code], ErrorResponse(
        error=exc.code.value.replace("_", " ").capitalize(),
        code=exc.code.value,
        detail=exc.message,
    ).model_dump()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def handle_start_session(body: dict[str, object]) -> tuple[int, dict[str, object]]:
    """Handle POST /sessions."""
    try:
        request = StartSessionRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    session_id, engine = _sessions.start(request.mode)
    response = SessionResponse(
        session_id=session_id, mode=engine.mode.value, state=engine.state.value
    )
    return 201, response.model_dump()


def handle_session_step(session_id: str, body: dict[str, object]) -> tuple[int, dict[str, object]]:
    """Handle POST /sessions/{id}/steps.

    A failed step closes the session; the error response carries the code.
    """
    try:
        step = StepModel.model_validate(body).to_step()
    except ValidationError as exc:
        return _validation_error(exc)

    try:
        engine, result = _sessions.step(session_id, step)
    except CertManagementError as exc:
        return _error(exc)

    response = StepResultResponse(
        session_id=session_id,
        state=engine.state.value,
        certificate_id=engine.certificate_id,
    )
    if isinstance(result, GenerateCSRResponse):
        response.generated_csr = CSRModel.from_domain(result.csr)
    elif isinstance(result, LoadCertificateResponse):
        response.certificate_loaded = True
    elif isinstance(result, FinalizeResponse):
        response.finalized = True
    return 200, response.model_dump(mode="json")


def handle_cancel_session(session_id: str) -> tuple[int, dict[str, object]]:
    """Handle DELETE /sessions/{id}."""
    _reap_idle_sessions()
    try:
        engine = _sessions.cancel(session_id)
    except CertManagementError as exc:
        return _error(exc)
    response = SessionResponse(
        session_id=session_id,
        mode=engine.mode.value,
        state=engine.state.value,
        certificate_id=engine.certificate_id,
    )
    return 200, response.model_dump()


# ---------------------------------------------------------------------------
# Unary operations
# ---------------------------------------------------------------------------


def handle_get_certificates() -> tuple[int, dict[str, object]]:
    """Handle GET /certificates."""
    _reap_idle_sessions()
    infos = _service.get_certificates()
    response = GetCertificatesResponse(
        certificate_info=[CertificateInfoModel.from_domain(i) for i in infos]
    )
    return 200, response.model_dump(mode="json")


def handle_revoke_certificates(body: dict[str, object]) -> tuple[int, dict[str, object]]:
    """Handle POST /certificates/revoke. Always 200; failures are per identity."""
    _reap_idle_sessions()
    try:
        request = RevokeCertificatesRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    result = _service.revoke_certificates(request.certificate_id)
    return 200, RevokeCertificatesResponse.from_domain(result).model_dump()


def handle_load_ca_bundle(body: dict[str, object]) -> tuple[int, dict[str, object]]:
    """Handle POST /ca-bundle."""
    _reap_idle_sessions()
    try:
        request = LoadCABundleRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    try:
        bundle = _service.load_ca_bundle(c.to_domain() for c in request.ca_certificates)
    except CertManagementError as exc:
        return _error(exc)
    response = CABundleResponse(ca_certificates=[CertificateModel.from_domain(c) for c in bundle])
    return 200, response.model_dump(mode="json")


def handle_get_ca_bundle() -> tuple[int, dict[str, object]]:
    """Handle GET /ca-bundle."""
    _reap_idle_sessions()
    response = CABundleResponse(
        ca_certificates=[CertificateModel.from_domain(c) for c in _service.ca_bundle()]
    )
    return 200, response.model_dump(mode="json")


def handle_can_generate_csr(body: dict[str, object]) -> tuple[int, dict[str, object]]:
    """Handle POST /can-generate-csr."""
    _reap_idle_sessions()
    try:
        request = CanGenerateCSRRequest.model_validate(body)
    except ValidationError as exc:
        return _validation_error(exc)

    can_generate = _service.can_generate_csr(
        key_type=request.key_type,
        certificate_type=request.certificate_type,
        key_size=request.key_size,
    )
    return 200, CanGenerateCSRResponse(can_generate=can_generate).model_dump()


def handle_health() -> tuple[int, dict[str, object]]:
    """Handle GET /health."""
    _reap_idle_sessions()
    response = HealthResponse(
        version=__version__,
        certificate_count=len(_service.get_certificates()),
        in_flight=len(_service.in_flight()),
        ca_bundle_size=len(_service.ca_bundle()),
    )
    return 200, response.model_dump()


__all__ = [
    "HTTP_STATUS",
    "configure",
    "handle_can_generate_csr",
    "handle_cancel_session",
    "handle_get_ca_bundle",
    "handle_get_certificates",
    "handle_health",
    "handle_load_ca_bundle",
    "handle_revoke_certificates",
    "handle_session_step",
    "handle_start_session",
    "reset_state",
]
