"""Pydantic request/response models for the certmgmt HTTP server.

PEM material travels as text. Each model that carries domain data has a
``to_domain`` (request side) or ``from_domain`` (response side) helper.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from certmgmt.certificates.csr import CSRParams
from certmgmt.certificates.models import (
    CSR,
    Certificate,
    CertificateInfo,
    CertificateType,
    EndpointType,
    KeyPair,
    KeyType,
)
from certmgmt.certificates.revocation import RevocationResult
from certmgmt.lifecycle.messages import (
    FinalizeRequest,
    GenerateCSRRequest,
    LoadCertificateRequest,
    StepRequest,
)
from certmgmt.lifecycle.registry import TransactionMode


class CertificateModel(BaseModel):
    """A certificate; ``certificate`` is PEM text for CT_X509."""

    type: CertificateType = CertificateType.CT_X509
    certificate: str

    def to_domain(self) -> Certificate:
        return Certificate(type=self.type, certificate=self.certificate.encode("utf-8"))

    @classmethod
    def from_domain(cls, cert: Certificate) -> "CertificateModel":
        return cls(type=cert.type, certificate=cert.certificate.decode("utf-8"))


class KeyPairModel(BaseModel):
    private_key: str
    public_key: str = ""

    def to_domain(self) -> KeyPair:
        return KeyPair(
            private_key=self.private_key.encode("utf-8"),
            public_key=self.public_key.encode("utf-8"),
        )


class CSRParamsModel(BaseModel):
    type: CertificateType = CertificateType.CT_X509
    min_key_size: int = Field(default=0, ge=0)
    key_type: KeyType = KeyType.KT_UNKNOWN
    common_name: str = ""
    country: str = ""
    state: str = ""
    city: str = ""
    organization: str = ""
    organizational_unit: str = ""
    ip_address: str = ""
    email_id: str = ""

    def to_domain(self) -> CSRParams:
        return CSRParams(**self.model_dump())


class GenerateCSRModel(BaseModel):
    certificate_id: str
    csr_params: CSRParamsModel = Field(default_factory=CSRParamsModel)


class LoadCertificateModel(BaseModel):
    certificate: CertificateModel
    key_pair: Optional[KeyPairModel] = None
    certificate_id: str = ""
    ca_certificates: list[CertificateModel] = Field(default_factory=list)


class FinalizeModel(BaseModel):
    pass


class StepModel(BaseModel):
    """One stream message; exactly one field must be set."""

    generate_csr: Optional[GenerateCSRModel] = None
    load_certificate: Optional[LoadCertificateModel] = None
    finalize: Optional[FinalizeModel] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "StepModel":
        present = [
            name
            for name in ("generate_csr", "load_certificate", "finalize")
            if getattr(self, name) is not None
        ]
        if len(present) != 1:
            raise ValueError(
                "exactly one of generate_csr, load_certificate, finalize must be set"
            )
        return self

    def to_step(self) -> StepRequest:
        if self.generate_csr is not None:
            return GenerateCSRRequest(
                certificate_id=self.generate_csr.certificate_id,
                csr_params=self.generate_csr.csr_params.to_domain(),
            )
        if self.load_certificate is not None:
            load = self.load_certificate
            return LoadCertificateRequest(
                certificate=load.certificate.to_domain(),
                key_pair=load.key_pair.to_domain() if load.key_pair else None,
                certificate_id=load.certificate_id,
                ca_certificates=tuple(c.to_domain() for c in load.ca_certificates),
            )
        return FinalizeRequest()


class StartSessionRequest(BaseModel):
    mode: TransactionMode


class SessionResponse(BaseModel):
    session_id: str
    mode: str
    state: str
    certificate_id: str = ""


class CSRModel(BaseModel):
    type: CertificateType
    csr: str

    @classmethod
    def from_domain(cls, csr: CSR) -> "CSRModel":
        return cls(type=csr.type, csr=csr.csr.decode("utf-8"))


class StepResultResponse(BaseModel):
    session_id: str
    state: str
    certificate_id: str = ""
    generated_csr: Optional[CSRModel] = None
    certificate_loaded: bool = False
    finalized: bool = False


class LoadCABundleRequest(BaseModel):
    ca_certificates: list[CertificateModel]


class CABundleResponse(BaseModel):
    ca_certificates: list[CertificateModel] = Field(default_factory=list)


class EndpointModel(BaseModel):
    type: EndpointType
    endpoint: str


class CertificateInfoModel(BaseModel):
    certificate_id: str
    certificate: CertificateModel
    endpoints: list[EndpointModel] = Field(default_factory=list)
    modification_time: int

    @classmethod
    def from_domain(cls, info: CertificateInfo) -> "CertificateInfoModel":
        return cls(
            certificate_id=info.certificate_id,
            certificate=CertificateModel.from_domain(info.certificate),
            endpoints=[EndpointModel(type=e.type, endpoint=e.endpoint) for e in info.endpoints],
            modification_time=info.modification_time,
        )


class GetCertificatesResponse(BaseModel):
    certificate_info: list[CertificateInfoModel] = Field(default_factory=list)


class RevokeCertificatesRequest(BaseModel):
    certificate_id: list[str]


class RevocationErrorModel(BaseModel):
    certificate_id: str
    code: str
    error_message: str


class RevokeCertificatesResponse(BaseModel):
    revoked_certificate_id: list[str] = Field(default_factory=list)
    certificate_revocation_error: list[RevocationErrorModel] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: RevocationResult) -> "RevokeCertificatesResponse":
        return cls(
            revoked_certificate_id=list(result.revoked),
            certificate_revocation_error=[
                RevocationErrorModel(
                    certificate_id=e.certificate_id,
                    code=e.code.value,
                    error_message=e.error_message,
                )
                for e in result.errors
            ],
        )


class CanGenerateCSRRequest(BaseModel):
    key_type: KeyType = KeyType.KT_UNKNOWN
    certificate_type: CertificateType = CertificateType.CT_X509
    key_size: int = Field(default=0, ge=0)


class CanGenerateCSRResponse(BaseModel):
    can_generate: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "certmgmt"
    version: str = "0.1.0"
    certificate_count: int = 0
    in_flight: int = 0
    ca_bundle_size: int = 0


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    code: str = ""
    detail: str = ""


__all__ = [
    "CABundleResponse",
    "CSRModel",
    "CSRParamsModel",
    "CanGenerateCSRRequest",
    "CanGenerateCSRResponse",
    "CertificateInfoModel",
    "CertificateModel",
    "ErrorResponse",
    "GetCertificatesResponse",
    "HealthResponse",
    "KeyPairModel",
    "LoadCABundleRequest",
    "RevokeCertificatesRequest",
    "RevokeCertificatesResponse",
    "SessionResponse",
    "StartSessionRequest",
    "StepModel",
    "StepResultResponse",
]
