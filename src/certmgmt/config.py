"""Configuration for the certificate management service.

Settings are a pydantic model so that a JSON config file, CLI options and
tests all go through the same validation. :func:`build_service` wires the
collaborators described by a config into a
:class:`~certmgmt.service.CertificateManagementService`.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from certmgmt.certificates.models import Endpoint, EndpointType

if TYPE_CHECKING:
    from certmgmt.service import CertificateManagementService

logger = logging.getLogger(__name__)


class EndpointBinding(BaseModel):
    """One endpoint bound to a certificate identity."""

    type: EndpointType = EndpointType.EP_UNSPECIFIED
    endpoint: str

    def to_endpoint(self) -> Endpoint:
        return Endpoint(type=self.type, endpoint=self.endpoint)


class CertManagerConfig(BaseModel):
    """Service settings.

    Attributes
    ----------
    store_dir:
        Directory for the filesystem certificate store. None keeps
        certificates in memory.
    ca_bundle_path:
        PEM file holding the committed CA bundle. None keeps it in memory.
    audit_log_path:
        JSONL audit log. None buffers audit events in memory.
    csr_generation_enabled:
        Whether the target generates key pairs and CSRs.
    default_key_size, max_key_size:
        RSA key size bounds for target-side generation.
    lock_shards:
        Partitions of the transaction registry.
    session_idle_timeout_seconds:
        HTTP sessions idle for longer are treated as disconnected and
        rolled back.
    endpoint_bindings:
        Endpoints attached to an identity when it is installed.
    """

    store_dir: Optional[Path] = None
    ca_bundle_path: Optional[Path] = None
    audit_log_path: Optional[Path] = None
    csr_generation_enabled: bool = True
    default_key_size: int = Field(default=2048, ge=2048)
    max_key_size: int = Field(default=8192, ge=2048, validate_default=True)
    lock_shards: int = Field(default=64, ge=1)
    session_idle_timeout_seconds: float = Field(default=300.0, gt=0)
    endpoint_bindings: dict[str, list[EndpointBinding]] = Field(default_factory=dict)

    @field_validator("max_key_size")
    @classmethod
    def _max_not_below_default(cls, value: int, info: ValidationInfo) -> int:
        default = info.data.get("default_key_size", 2048)
        if value < default:
            raise ValueError("max_key_size must not be smaller than default_key_size")
        return value

    def endpoints_by_identity(self) -> dict[str, tuple[Endpoint, ...]]:
        return {
            certificate_id: tuple(b.to_endpoint() for b in bindings)
            for certificate_id, bindings in self.endpoint_bindings.items()
        }


def load_config(path: Path | None) -> CertManagerConfig:
    """Load settings from a JSON file; defaults when *path* is None.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    pydantic.ValidationError
        If the file contents are invalid.
    """
    if path is None:
        return CertManagerConfig()
    data = json.loads(path.read_text(encoding="utf-8"))
    config = CertManagerConfig.model_validate(data)
    logger.debug("Loaded configuration from %s", path)
    return config


def build_service(config: CertManagerConfig) -> "CertificateManagementService":
    """Construct a service and its collaborators from *config*."""
    from certmgmt.audit import LifecycleAuditLogger
    from certmgmt.certificates.ca_bundle import CABundleManager
    from certmgmt.certificates.csr import CSRGenerator
    from certmgmt.certificates.store import CertStore, FilesystemCertStore, InMemoryCertStore
    from certmgmt.lifecycle.registry import TransactionRegistry
    from certmgmt.service import CertificateManagementService

    store: CertStore
    if config.store_dir is not None:
        store = FilesystemCertStore(base_dir=config.store_dir)
    else:
        store = InMemoryCertStore()

    return CertificateManagementService(
        store=store,
        ca_bundles=CABundleManager(persist_path=config.ca_bundle_path),
        registry=TransactionRegistry(shards=config.lock_shards),
        csr_generator=CSRGenerator(
            enabled=config.csr_generation_enabled,
            default_key_size=config.default_key_size,
            max_key_size=config.max_key_size,
        ),
        endpoint_bindings=config.endpoints_by_identity(),
        audit=LifecycleAuditLogger(log_path=config.audit_log_path),
    )


__all__ = ["CertManagerConfig", "EndpointBinding", "build_service", "load_config"]
