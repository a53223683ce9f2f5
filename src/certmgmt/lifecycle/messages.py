"""Step requests and responses exchanged on an install or rotate stream.

A session consumes a sequence of step requests. The set of step kinds is
closed, and the engine dispatches on the concrete type.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from certmgmt.certificates.csr import CSRParams
from certmgmt.certificates.models import CSR, Certificate, KeyPair


@dataclass(frozen=True)
class GenerateCSRRequest:
    """Ask the target to generate a key pair and CSR for *certificate_id*."""

    certificate_id: str
    csr_params: CSRParams = field(default_factory=CSRParams)


@dataclass(frozen=True)
class GenerateCSRResponse:
    csr: CSR


@dataclass(frozen=True)
class LoadCertificateRequest:
    """Stage a signed certificate.

    Parameters
    ----------
    certificate:
        The signed certificate.
    key_pair:
        Caller-generated key pair. Only valid when no CSR was generated in
        this session.
    certificate_id:
        Identity for the certificate. Required when no CSR was generated in
        this session; otherwise it must be empty or match the CSR's identity.
    ca_certificates:
        Optional CA bundle replacing the committed one at finalize.
    """

    certificate: Certificate
    key_pair: KeyPair | None = None
    certificate_id: str = ""
    ca_certificates: tuple[Certificate, ...] = ()


@dataclass(frozen=True)
class LoadCertificateResponse:
    pass


@dataclass(frozen=True)
class FinalizeRequest:
    """Commit the staged certificate."""


@dataclass(frozen=True)
class FinalizeResponse:
    certificate_id: str


StepRequest = Union[GenerateCSRRequest, LoadCertificateRequest, FinalizeRequest]
StepResponse = Union[GenerateCSRResponse, LoadCertificateResponse, FinalizeResponse]


__all__ = [
    "FinalizeRequest",
    "FinalizeResponse",
    "GenerateCSRRequest",
    "GenerateCSRResponse",
    "LoadCertificateRequest",
    "LoadCertificateResponse",
    "StepRequest",
    "StepResponse",
]
