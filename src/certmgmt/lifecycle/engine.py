"""LifecycleEngine — the install/rotate state machine for one session.

States::

    IDLE -> AWAITING_MATERIAL -> STAGED -> COMMITTED
      \\            \\              \\
       +------------+--------------+--> ROLLED_BACK

The certificate store and the CA bundle are only written at finalize.
Everything before that lives in the session's :class:`Transaction`, so a
rollback only has to drop staged material and release the identity. The
identity is acquired in the registry by the first step and released exactly
once, by either commit or rollback.

Any step that fails aborts the transaction; the caller retries with a new
session.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping

from certmgmt.audit import LifecycleAuditLogger
from certmgmt.certificates.ca_bundle import CABundleManager, validate_bundle
from certmgmt.certificates.csr import CSRGenerator
from certmgmt.certificates.models import (
    CommittedCertificate,
    Endpoint,
    KeyPair,
    certificate_matches_key,
)
from certmgmt.certificates.store import CertStore
from certmgmt.errors import (
    CertManagementError,
    CertificateExistsError,
    CertificateNotFoundError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
)
from certmgmt.lifecycle.messages import (
    FinalizeRequest,
    FinalizeResponse,
    GenerateCSRRequest,
    GenerateCSRResponse,
    LoadCertificateRequest,
    LoadCertificateResponse,
    StepRequest,
    StepResponse,
)
from certmgmt.lifecycle.registry import (
    Transaction,
    TransactionMode,
    TransactionRegistry,
    TransactionState,
)

logger = logging.getLogger(__name__)


class LifecycleEngine:
    """Drives one install or rotate session.

    Parameters
    ----------
    mode:
        INSTALL or ROTATE.
    store:
        Committed certificate storage.
    registry:
        Shared transaction registry (the identity lock).
    ca_bundles:
        Committed CA bundle.
    csr_generator:
        Target-side key and CSR generation.
    endpoint_bindings:
        Endpoints to bind to a newly installed identity. Rotations keep the
        endpoints of the certificate they replace.
    audit:
        Optional audit trail.
    """

    def __init__(
        self,
        mode: TransactionMode,
        store: CertStore,
        registry: TransactionRegistry,
        ca_bundles: CABundleManager,
        csr_generator: CSRGenerator,
        endpoint_bindings: Mapping[str, tuple[Endpoint, ...]] | None = None,
        audit: LifecycleAuditLogger | None = None,
    ) -> None:
        self._mode = mode
        self._store = store
        self._registry = registry
        self._ca_bundles = ca_bundles
        self._csr_generator = csr_generator
        self._endpoint_bindings = endpoint_bindings or {}
        self._audit = audit
        self._state = TransactionState.IDLE
        self._transaction: Transaction | None = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def mode(self) -> TransactionMode:
        return self._mode

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def certificate_id(self) -> str:
        """The identity this session is bound to, or "" before the first step."""
        return self._transaction.certificate_id if self._transaction else ""

    @property
    def transaction(self) -> Transaction | None:
        return self._transaction

    # ------------------------------------------------------------------
    # Step dispatch
    # ------------------------------------------------------------------

    def handle(self, step: StepRequest) -> StepResponse:
        """Apply one step and return its response.

        Raises
        ------
        CertManagementError
            If the step fails. The transaction has been rolled back by the
            time the exception propagates (unless the engine was already in
            a terminal state, which is left unchanged).
        """
        with self._lock:
            if self._state.terminal:
                raise FailedPreconditionError(
                    f"Session is already {self._state.value}; start a new session.",
                    certificate_id=self.certificate_id,
                )
            logger.debug(
                "%s session %r: %s in state %s",
                self._mode.value,
                self.certificate_id,
                type(step).__name__,
                self._state.value,
            )
            try:
                if isinstance(step, GenerateCSRRequest):
                    return self._generate_csr(step)
                if isinstance(step, LoadCertificateRequest):
                    return self._load_certificate(step)
                if isinstance(step, FinalizeRequest):
                    return self._finalize()
                raise InvalidArgumentError(f"Unknown step type {type(step).__name__}")
            except CertManagementError as exc:
                if not exc.certificate_id:
                    exc.certificate_id = self.certificate_id
                self.abort(reason=f"{exc.code.value}: {exc.message}")
                raise
            except Exception as exc:
                self.abort(reason=f"INTERNAL: {exc}")
                raise InternalError(
                    f"Unexpected failure: {exc}", certificate_id=self.certificate_id
                ) from exc

    def abort(self, reason: str = "aborted") -> bool:
        """Roll back the session. No-op once the session is terminal.

        Returns
        -------
        bool
            True if this call performed the rollback.
        """
        with self._lock:
            if self._state.terminal:
                return False
            self._state = TransactionState.ROLLED_BACK
            transaction = self._transaction
            if transaction is None:
                return True
            transaction.discard_staged()
            transaction.state = TransactionState.ROLLED_BACK
            self._registry.release(transaction.certificate_id, transaction)
        logger.warning(
            "Rolled back %s of %r: %s",
            self._mode.value,
            transaction.certificate_id,
            reason,
        )
        if self._audit is not None:
            self._audit_after(
                self._audit.log_rolled_back, transaction.certificate_id, self._mode.value, reason
            )
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _generate_csr(self, step: GenerateCSRRequest) -> GenerateCSRResponse:
        if self._state != TransactionState.IDLE:
            raise FailedPreconditionError(
                f"GenerateCSR is only valid as the first step (state is {self._state.value})."
            )
        transaction = self._begin(step.certificate_id)
        csr, key_pair = self._csr_generator.generate(step.csr_params)
        transaction.staged_csr = csr
        transaction.staged_key_pair = key_pair
        self._transition(TransactionState.AWAITING_MATERIAL)
        if self._audit is not None:
            self._audit.log_csr_generated(transaction.certificate_id, step.csr_params.key_type.value)
        return GenerateCSRResponse(csr=csr)

    def _load_certificate(self, step: LoadCertificateRequest) -> LoadCertificateResponse:
        key_pair: KeyPair | None
        if self._state == TransactionState.IDLE:
            if not step.certificate_id:
                raise InvalidArgumentError(
                    "certificate_id is required when the caller supplies its own key pair."
                )
            transaction = self._begin(step.certificate_id)
            key_pair = step.key_pair
        elif self._state == TransactionState.AWAITING_MATERIAL:
            transaction = self._require_transaction()
            if step.certificate_id and step.certificate_id != transaction.certificate_id:
                raise CertificateNotFoundError(
                    f"certificate_id {step.certificate_id!r} does not match the CSR "
                    f"generated for {transaction.certificate_id!r}."
                )
            if step.key_pair is not None:
                raise InvalidArgumentError(
                    "A key pair was supplied but the target generated the key for this session."
                )
            key_pair = transaction.staged_key_pair
        else:
            raise FailedPreconditionError(
                f"LoadCertificate is not valid in state {self._state.value}."
            )

        step.certificate.load_x509()
        if key_pair is not None and not certificate_matches_key(step.certificate, key_pair):
            raise InvalidArgumentError(
                "Certificate public key does not match the key pair for "
                f"{transaction.certificate_id!r}."
            )
        ca_bundle = validate_bundle(step.ca_certificates) if step.ca_certificates else None

        transaction.staged_certificate = step.certificate
        transaction.staged_key_pair = key_pair
        transaction.staged_ca_bundle = ca_bundle
        self._transition(TransactionState.STAGED)
        if self._audit is not None:
            self._audit.log_certificate_staged(
                transaction.certificate_id,
                step.certificate.fingerprint(),
                with_ca_bundle=ca_bundle is not None,
            )
        return LoadCertificateResponse()

    def _finalize(self) -> FinalizeResponse:
        if self._state != TransactionState.STAGED:
            raise FailedPreconditionError(
                f"Finalize requires a loaded certificate (state is {self._state.value})."
            )
        transaction = self._require_transaction()
        self._commit(transaction)

        self._transition(TransactionState.COMMITTED)
        self._registry.release(transaction.certificate_id, transaction)
        logger.info(
            "Committed %s of %r", self._mode.value, transaction.certificate_id
        )
        if self._audit is not None:
            # The commit is durable; audit failures from here on are logged only.
            if transaction.staged_ca_bundle is not None:
                self._audit_after(
                    self._audit.log_ca_bundle_replaced,
                    len(transaction.staged_ca_bundle),
                    certificate_id=transaction.certificate_id,
                )
            self._audit_after(
                self._audit.log_committed,
                transaction.certificate_id,
                self._mode.value,
                transaction.staged_certificate.fingerprint(),  # type: ignore[union-attr]
            )
        return FinalizeResponse(certificate_id=transaction.certificate_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _begin(self, certificate_id: str) -> Transaction:
        """Acquire the identity and check the mode's store precondition."""
        if not certificate_id:
            raise InvalidArgumentError("certificate_id must not be empty.")
        transaction = self._registry.acquire(certificate_id, self._mode)
        self._transaction = transaction

        existing = self._store.get(certificate_id)
        if self._mode == TransactionMode.INSTALL and existing is not None:
            raise CertificateExistsError(certificate_id)
        if self._mode == TransactionMode.ROTATE:
            if existing is None:
                raise CertificateNotFoundError(
                    f"No certificate installed for certificate_id={certificate_id!r}; "
                    "use install to create it.",
                    certificate_id=certificate_id,
                )
            transaction.previous = existing

        logger.info("Started %s of %r", self._mode.value, certificate_id)
        if self._audit is not None:
            self._audit.log_transaction_started(certificate_id, self._mode.value)
        return transaction

    def _commit(self, transaction: Transaction) -> None:
        """Write the staged material. Undoes the store write if the bundle fails."""
        if transaction.staged_certificate is None:
            raise InternalError("No staged certificate to commit.")

        previous = transaction.previous
        if self._mode == TransactionMode.ROTATE and previous is not None:
            endpoints = previous.endpoints
        else:
            endpoints = tuple(self._endpoint_bindings.get(transaction.certificate_id, ()))

        entry = CommittedCertificate(
            certificate_id=transaction.certificate_id,
            certificate=transaction.staged_certificate,
            key_pair=transaction.staged_key_pair,
            endpoints=endpoints,
        )
        try:
            self._store.put(entry)
        except Exception as exc:
            raise InternalError(f"Failed to commit certificate: {exc}") from exc

        if transaction.staged_ca_bundle is None:
            return
        try:
            self._ca_bundles.replace(transaction.staged_ca_bundle)
        except Exception as exc:
            try:
                self._undo_store_write(transaction)
            except Exception as undo_exc:
                logger.critical(
                    "Certificate store is inconsistent for %r: CA bundle commit failed (%s) "
                    "and restoring the previous entry failed (%s)",
                    transaction.certificate_id,
                    exc,
                    undo_exc,
                )
                raise InternalError(
                    f"Failed to commit CA bundle ({exc}) and could not restore the "
                    f"previous certificate ({undo_exc}); the certificate store is "
                    "inconsistent and needs operator attention."
                ) from undo_exc
            raise InternalError(f"Failed to commit CA bundle: {exc}") from exc

    def _undo_store_write(self, transaction: Transaction) -> None:
        if transaction.previous is not None:
            self._store.put(transaction.previous)
        else:
            self._store.delete(transaction.certificate_id)

    def _audit_after(self, record: Callable[..., object], *args: object, **kwargs: object) -> None:
        try:
            record(*args, **kwargs)
        except Exception:
            logger.exception(
                "Audit %s failed for %r", getattr(record, "__name__", record), self.certificate_id
            )

    def _require_transaction(self) -> Transaction:
        if self._transaction is None:
            raise InternalError("No transaction is bound to this session.")
        return self._transaction

    def _transition(self, state: TransactionState) -> None:
        self._state = state
        if self._transaction is not None:
            self._transaction.state = state


__all__ = ["LifecycleEngine"]
