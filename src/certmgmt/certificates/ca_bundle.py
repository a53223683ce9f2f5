"""CA bundle management — atomic replacement of the trusted CA set.

The current bundle is an immutable tuple. Replacement builds the new tuple
completely and then swaps the reference, so readers never lock and never see
a bundle made of entries from two replace calls. When a persist path is
configured the bundle is written as concatenated PEM through a temporary
file and ``os.replace``.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from certmgmt.certificates.models import CABundle, Certificate, CertificateType
from certmgmt.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


def validate_bundle(certificates: Iterable[Certificate]) -> CABundle:
    """Check that every entry decodes and return the bundle as a tuple.

    Order is preserved. Each certificate is treated as an independent trust
    anchor; no chain relationships are checked.

    Raises
    ------
    InvalidArgumentError
        If any certificate is not decodable PEM.
    UnimplementedError
        If any certificate is not of type ``CT_X509``.
    """
    bundle = tuple(certificates)
    for index, cert in enumerate(bundle):
        try:
            cert.load_x509()
        except InvalidArgumentError as exc:
            raise InvalidArgumentError(f"CA certificate #{index}: {exc.message}") from exc
    return bundle


class CABundleManager:
    """Holds the committed CA bundle.

    Parameters
    ----------
    persist_path:
        If provided, the bundle is loaded from and written to this PEM file.
    """

    def __init__(self, persist_path: Path | None = None) -> None:
        self._persist_path = persist_path
        self._write_lock = threading.Lock()
        self._bundle: CABundle = ()
        self._generation = 0

        if persist_path is not None and persist_path.exists():
            self._bundle = self._load_from_disk(persist_path)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def current(self) -> CABundle:
        """Return the committed bundle (a snapshot; safe to iterate)."""
        return self._bundle

    @property
    def generation(self) -> int:
        """Number of replacements applied since start-up."""
        return self._generation

    def __len__(self) -> int:
        return len(self._bundle)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def replace(self, bundle: Iterable[Certificate]) -> CABundle:
        """Atomically replace the committed bundle.

        Parameters
        ----------
        bundle:
            The new CA certificates, in any order.

        Returns
        -------
        CABundle
            The bundle now in effect.
        """
        new_bundle = validate_bundle(bundle)
        with self._write_lock:
            if self._persist_path is not None:
                self._save_to_disk(self._persist_path, new_bundle)
            self._bundle = new_bundle
            self._generation += 1
        logger.info("CA bundle replaced with %d certificate(s)", len(new_bundle))
        return new_bundle

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _save_to_disk(path: Path, bundle: CABundle) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = b"".join(
            cert.certificate if cert.certificate.endswith(b"\n") else cert.certificate + b"\n"
            for cert in bundle
        )
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".pem")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _load_from_disk(path: Path) -> CABundle:
        data = path.read_bytes()
        if not data.strip():
            return ()
        certs = x509.load_pem_x509_certificates(data)
        return tuple(
            Certificate(
                type=CertificateType.CT_X509,
                certificate=cert.public_bytes(serialization.Encoding.PEM),
            )
            for cert in certs
        )


__all__ = ["CABundleManager", "validate_bundle"]
