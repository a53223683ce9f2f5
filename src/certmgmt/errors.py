"""Status codes and exception types for certificate management operations.

Every failure surfaced by the lifecycle engine, the revocation service or the
CA bundle manager is a :class:`CertManagementError` subclass carrying a
:class:`StatusCode`. Transports map the code to their own status taxonomy.
"""
from __future__ import annotations

from enum import Enum


class StatusCode(str, Enum):
    """Outcome codes shared by every certificate management operation."""

    OK = "OK"
    ALREADY_IN_PROGRESS = "ALREADY_IN_PROGRESS"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    NOT_FOUND = "NOT_FOUND"
    UNIMPLEMENTED = "UNIMPLEMENTED"
    FAILED_PRECONDITION = "FAILED_PRECONDITION"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    INTERNAL = "INTERNAL"


class CertManagementError(Exception):
    """Base class for all certificate management failures.

    Parameters
    ----------
    message:
        Human-readable description of the failure.
    certificate_id:
        The certificate identity involved, when there is one.
    """

    code: StatusCode = StatusCode.INTERNAL

    def __init__(self, message: str, certificate_id: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.certificate_id = certificate_id

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "certificate_id": self.certificate_id,
        }


class AlreadyInProgressError(CertManagementError):
    """Raised when another transaction or revocation already holds the certificate identity."""

    code = StatusCode.ALREADY_IN_PROGRESS

    def __init__(self, certificate_id: str, holder: str = "install/rotate transaction") -> None:
        super().__init__(
            f"Another {holder} is in progress for certificate_id={certificate_id!r}.",
            certificate_id=certificate_id,
        )
        self.holder = holder


class CertificateExistsError(CertManagementError):
    """Raised when an install targets an identity that already has a certificate."""

    code = StatusCode.ALREADY_EXISTS

    def __init__(self, certificate_id: str) -> None:
        super().__init__(
            f"A certificate is already installed for certificate_id={certificate_id!r}. "
            "Use rotate to replace it.",
            certificate_id=certificate_id,
        )


class CertificateNotFoundError(CertManagementError):
    """Raised when an identity is missing or a step names a different identity."""

    code = StatusCode.NOT_FOUND


class UnimplementedError(CertManagementError):
    """Raised for unsupported key types, key sizes or certificate types."""

    code = StatusCode.UNIMPLEMENTED


class FailedPreconditionError(CertManagementError):
    """Raised for out-of-order steps and revocation of locked identities."""

    code = StatusCode.FAILED_PRECONDITION


class InvalidArgumentError(CertManagementError):
    """Raised for malformed certificates, keys or bundles."""

    code = StatusCode.INVALID_ARGUMENT


class InternalError(CertManagementError):
    """Raised when staging or committing fails unexpectedly."""

    code = StatusCode.INTERNAL


__all__ = [
    "AlreadyInProgressError",
    "CertManagementError",
    "CertificateExistsError",
    "CertificateNotFoundError",
    "FailedPreconditionError",
    "InternalError",
    "InvalidArgumentError",
    "StatusCode",
    "UnimplementedError",
]
