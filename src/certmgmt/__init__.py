"""certmgmt — target-side certificate install, rotation, CA bundle and revocation management.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import certmgmt
>>> certmgmt.__version__
'0.1.0'

Quick start
-----------
::

    from certmgmt import (
        CertificateManagementService, GenerateCSRRequest, LoadCertificateRequest,
        FinalizeRequest, CSRParams, Certificate, CertificateType,
    )

    service = CertificateManagementService()
    session = service.install(steps)
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------
from certmgmt.errors import (
    AlreadyInProgressError,
    CertManagementError,
    CertificateExistsError,
    CertificateNotFoundError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    StatusCode,
    UnimplementedError,
)

# ------------------------------------------------------------------
# Certificate subsystem
# ------------------------------------------------------------------
from certmgmt.certificates import (
    CABundle,
    CABundleManager,
    CSR,
    CSRGenerator,
    CSRParams,
    CertStore,
    Certificate,
    CertificateInfo,
    CertificateType,
    CommittedCertificate,
    DevelopmentCA,
    Endpoint,
    EndpointType,
    FilesystemCertStore,
    InMemoryCertStore,
    KeyPair,
    KeyType,
    RevocationError,
    RevocationResult,
    RevocationService,
)

# ------------------------------------------------------------------
# Lifecycle subsystem
# ------------------------------------------------------------------
from certmgmt.lifecycle import (
    FinalizeRequest,
    FinalizeResponse,
    GenerateCSRRequest,
    GenerateCSRResponse,
    LifecycleEngine,
    LoadCertificateRequest,
    LoadCertificateResponse,
    Transaction,
    TransactionMode,
    TransactionRegistry,
    TransactionState,
    run_session,
)

# ------------------------------------------------------------------
# Service, configuration and audit
# ------------------------------------------------------------------
from certmgmt.audit import AuditEvent, LifecycleAuditLogger
from certmgmt.config import CertManagerConfig, EndpointBinding, build_service, load_config
from certmgmt.service import CertificateManagementService

__all__ = [
    # version
    "__version__",
    # errors
    "AlreadyInProgressError",
    "CertManagementError",
    "CertificateExistsError",
    "CertificateNotFoundError",
    "FailedPreconditionError",
    "InternalError",
    "InvalidArgumentError",
    "StatusCode",
    "UnimplementedError",
    # certificates
    "CABundle",
    "CABundleManager",
    "CSR",
    "CSRGenerator",
    "CSRParams",
    "CertStore",
    "Certificate",
    "CertificateInfo",
    "CertificateType",
    "CommittedCertificate",
    "DevelopmentCA",
    "Endpoint",
    "EndpointType",
    "FilesystemCertStore",
    "InMemoryCertStore",
    "KeyPair",
    "KeyType",
    "RevocationError",
    "RevocationResult",
    "RevocationService",
    # lifecycle
    "FinalizeRequest",
    "FinalizeResponse",
    "GenerateCSRRequest",
    "GenerateCSRResponse",
    "LifecycleEngine",
    "LoadCertificateRequest",
    "LoadCertificateResponse",
    "Transaction",
    "TransactionMode",
    "TransactionRegistry",
    "TransactionState",
    "run_session",
    # service
    "AuditEvent",
    "CertManagerConfig",
    "CertificateManagementService",
    "EndpointBinding",
    "LifecycleAuditLogger",
    "build_service",
    "load_config",
]
