"""Certificate query and revocation against committed state.

Queries are snapshot reads of the store. Revocation deletes committed
entries, one identity at a time, and reports a partitioned result: an
identity is either revoked (including identities that were never installed)
or listed with the reason it could not be. An identity with an in-flight
install/rotate transaction on a committed certificate is never revoked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from certmgmt.audit import LifecycleAuditLogger
from certmgmt.certificates.models import CertificateInfo
from certmgmt.certificates.store import CertStore
from certmgmt.errors import AlreadyInProgressError, StatusCode
from certmgmt.lifecycle.registry import TransactionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevocationError:
    """Why one identity could not be revoked."""

    certificate_id: str
    code: StatusCode
    error_message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "certificate_id": self.certificate_id,
            "code": self.code.value,
            "error_message": self.error_message,
        }


@dataclass
class RevocationResult:
    """Outcome of a revoke call.

    Parameters
    ----------
    revoked:
        Identities that are now absent from the store.
    errors:
        Identities that were left untouched, with the reason.
    """

    revoked: list[str] = field(default_factory=list)
    errors: list[RevocationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "revoked_certificate_id": list(self.revoked),
            "certificate_revocation_error": [e.to_dict() for e in self.errors],
        }


class RevocationService:
    """Answers certificate queries and revokes committed certificates.

    Parameters
    ----------
    store:
        Committed certificate storage.
    registry:
        Transaction registry; revocation holds each identity briefly so it
        cannot interleave with a commit.
    audit:
        Optional audit trail.
    """

    def __init__(
        self,
        store: CertStore,
        registry: TransactionRegistry,
        audit: LifecycleAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._audit = audit

    def query(self) -> list[CertificateInfo]:
        """Return every committed certificate, sorted by certificate_id."""
        return [CertificateInfo.from_committed(entry) for entry in self._store.list()]

    def revoke(self, certificate_ids: Iterable[str]) -> RevocationResult:
        """Revoke each identity independently.

        Duplicate identities are processed once. The call itself never
        raises for a per-identity failure.
        """
        result = RevocationResult()
        seen: set[str] = set()
        for certificate_id in certificate_ids:
            if certificate_id in seen:
                continue
            seen.add(certificate_id)
            error = self._revoke_one(certificate_id)
            if error is None:
                result.revoked.append(certificate_id)
            else:
                result.errors.append(error)
            if self._audit is not None:
                self._audit.log_revocation(
                    certificate_id,
                    success=error is None,
                    reason=error.error_message if error else "",
                )
        logger.info(
            "Revocation: %d revoked, %d failed", len(result.revoked), len(result.errors)
        )
        return result

    def _revoke_one(self, certificate_id: str) -> RevocationError | None:
        # An identity with nothing committed is revoked, even while an install
        # for it is in flight.
        try:
            if not self._store.exists(certificate_id):
                logger.debug("Certificate %r not present; treated as revoked", certificate_id)
                return None
            with self._registry.hold(certificate_id):
                if self._store.exists(certificate_id):
                    self._store.delete(certificate_id)
                    logger.info("Revoked certificate %r", certificate_id)
        except AlreadyInProgressError as exc:
            return RevocationError(
                certificate_id=certificate_id,
                code=StatusCode.FAILED_PRECONDITION,
                error_message=f"Cannot revoke {certificate_id!r}: a {exc.holder} is in progress.",
            )
        except KeyError:
            # Already gone.
            return None
        except OSError as exc:
            logger.error("Failed to revoke %r: %s", certificate_id, exc)
            return RevocationError(
                certificate_id=certificate_id,
                code=StatusCode.INTERNAL,
                error_message=f"Storage failure: {exc}",
            )
        return None


__all__ = ["RevocationError", "RevocationResult", "RevocationService"]
