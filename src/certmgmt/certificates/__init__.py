"""Certificate material, storage, CSR generation, CA bundles and revocation.

Provides the committed-state side of the target: the certificate store,
the CA bundle manager, target-side CSR generation and the query/revoke
service.
"""
from __future__ import annotations

from certmgmt.certificates.models import (
    CABundle,
    CSR,
    Certificate,
    CertificateInfo,
    CertificateType,
    CommittedCertificate,
    Endpoint,
    EndpointType,
    KeyPair,
    KeyType,
)
from certmgmt.certificates.store import CertStore, FilesystemCertStore, InMemoryCertStore
from certmgmt.certificates.csr import CSRGenerator, CSRParams
from certmgmt.certificates.ca_bundle import CABundleManager
from certmgmt.certificates.ca import DevelopmentCA
from certmgmt.certificates.revocation import (
    RevocationError,
    RevocationResult,
    RevocationService,
)

__all__ = [
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
]
