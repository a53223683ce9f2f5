"""CertificateManagementService — the target's certificate management surface.

One object exposes every operation a transport needs:

* ``install(steps)`` / ``rotate(steps)`` — streaming sessions; each call
  creates its own :class:`~certmgmt.lifecycle.engine.LifecycleEngine`.
* ``load_ca_bundle``, ``get_certificates``, ``revoke_certificates``,
  ``can_generate_csr`` — unary operations.

The store, CA bundle manager, registry and CSR generator are shared by all
sessions and injected at construction.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping

from certmgmt.audit import LifecycleAuditLogger
from certmgmt.certificates.ca_bundle import CABundleManager
from certmgmt.certificates.csr import CSRGenerator
from certmgmt.certificates.models import (
    CABundle,
    Certificate,
    CertificateInfo,
    CertificateType,
    Endpoint,
    KeyType,
)
from certmgmt.certificates.revocation import RevocationResult, RevocationService
from certmgmt.certificates.store import CertStore, InMemoryCertStore
from certmgmt.errors import InvalidArgumentError
from certmgmt.lifecycle.engine import LifecycleEngine
from certmgmt.lifecycle.messages import StepRequest, StepResponse
from certmgmt.lifecycle.registry import Transaction, TransactionMode, TransactionRegistry
from certmgmt.lifecycle.session import run_session

logger = logging.getLogger(__name__)


class CertificateManagementService:
    """Certificate install, rotation, CA bundle and revocation operations.

    Parameters
    ----------
    store:
        Committed certificate storage. Defaults to an in-memory store.
    ca_bundles:
        Committed CA bundle. Defaults to an empty in-memory bundle.
    registry:
        Transaction registry shared by all sessions.
    csr_generator:
        Target-side key/CSR generation.
    endpoint_bindings:
        Endpoints attached to identities at install time.
    audit:
        Optional audit trail.

    Example
    -------
    ::

        service = CertificateManagementService()
        responses = list(service.install([
            LoadCertificateRequest(certificate=cert, key_pair=keys, certificate_id="dev-1"),
            FinalizeRequest(),
        ]))
    """

    def __init__(
        self,
        store: CertStore | None = None,
        ca_bundles: CABundleManager | None = None,
        registry: TransactionRegistry | None = None,
        csr_generator: CSRGenerator | None = None,
        endpoint_bindings: Mapping[str, tuple[Endpoint, ...]] | None = None,
        audit: LifecycleAuditLogger | None = None,
    ) -> None:
        self.store = store if store is not None else InMemoryCertStore()
        self.ca_bundles = ca_bundles if ca_bundles is not None else CABundleManager()
        self.registry = registry if registry is not None else TransactionRegistry()
        self.csr_generator = csr_generator if csr_generator is not None else CSRGenerator()
        self.endpoint_bindings = dict(endpoint_bindings or {})
        self.audit = audit
        self._revocation = RevocationService(self.store, self.registry, audit=audit)

    # ------------------------------------------------------------------
    # Streaming sessions
    # ------------------------------------------------------------------

    def new_engine(self, mode: TransactionMode) -> LifecycleEngine:
        """Create an engine for one session, bound to the shared collaborators."""
        return LifecycleEngine(
            mode=mode,
            store=self.store,
            registry=self.registry,
            ca_bundles=self.ca_bundles,
            csr_generator=self.csr_generator,
            endpoint_bindings=self.endpoint_bindings,
            audit=self.audit,
        )

    def install(self, steps: Iterable[StepRequest]) -> Iterator[StepResponse]:
        """Run an install session over *steps*, yielding a response per step."""
        return run_session(self.new_engine(TransactionMode.INSTALL), steps)

    def rotate(self, steps: Iterable[StepRequest]) -> Iterator[StepResponse]:
        """Run a rotate session over *steps*, yielding a response per step."""
        return run_session(self.new_engine(TransactionMode.ROTATE), steps)

    # ------------------------------------------------------------------
    # Unary operations
    # ------------------------------------------------------------------

    def load_ca_bundle(self, certificates: Iterable[Certificate]) -> CABundle:
        """Replace the committed CA bundle immediately.

        Raises
        ------
        InvalidArgumentError
            If the bundle is empty or contains an undecodable certificate.
        """
        bundle = tuple(certificates)
        if not bundle:
            raise InvalidArgumentError("A CA bundle must contain at least one certificate.")
        committed = self.ca_bundles.replace(bundle)
        if self.audit is not None:
            self.audit.log_ca_bundle_replaced(len(committed))
        return committed

    def ca_bundle(self) -> CABundle:
        return self.ca_bundles.current()

    def get_certificates(self) -> list[CertificateInfo]:
        return self._revocation.query()

    def revoke_certificates(self, certificate_ids: Iterable[str]) -> RevocationResult:
        return self._revocation.revoke(certificate_ids)

    def can_generate_csr(
        self,
        key_type: KeyType = KeyType.KT_UNKNOWN,
        certificate_type: CertificateType = CertificateType.CT_X509,
        key_size: int = 0,
    ) -> bool:
        return self.csr_generator.can_generate(key_type, certificate_type, key_size)

    def in_flight(self) -> list[Transaction]:
        """Return a snapshot of in-flight install/rotate transactions."""
        return self.registry.transactions()


__all__ = ["CertificateManagementService"]
