"""Certificate storage — abstract interface, in-memory and filesystem backends.

CertStore defines the storage contract used by the lifecycle engine and the
revocation service. Each operation is atomic for a single entry: a reader
sees either the previous entry or the new one, never a mixture.
FilesystemCertStore persists one JSON document per identity and replaces it
with ``os.replace`` so a crash mid-write leaves the old entry intact.
"""
from __future__ import annotations

import base64
import json
import os
import tempfile
import threading
import urllib.parse
from abc import ABC, abstractmethod
from pathlib import Path

from certmgmt.certificates.models import (
    Certificate,
    CertificateType,
    CommittedCertificate,
    Endpoint,
    EndpointType,
    KeyPair,
)


class CertStore(ABC):
    """Abstract base class for committed-certificate storage backends."""

    @abstractmethod
    def get(self, certificate_id: str) -> CommittedCertificate | None:
        """Return the committed certificate for *certificate_id*, or None."""

    @abstractmethod
    def put(self, entry: CommittedCertificate) -> None:
        """Insert or replace the entry for ``entry.certificate_id``.

        Parameters
        ----------
        entry:
            The certificate to commit.
        """

    @abstractmethod
    def delete(self, certificate_id: str) -> None:
        """Remove the entry for *certificate_id*.

        Raises
        ------
        KeyError
            If no certificate exists for the given identity.
        """

    @abstractmethod
    def list(self) -> list[CommittedCertificate]:
        """Return all committed entries sorted by certificate_id."""

    def exists(self, certificate_id: str) -> bool:
        """Return True if a certificate is committed for *certificate_id*."""
        return self.get(certificate_id) is not None


class InMemoryCertStore(CertStore):
    """Dictionary-backed store, used in tests and when no store_dir is configured."""

    def __init__(self) -> None:
        self._entries: dict[str, CommittedCertificate] = {}
        self._lock = threading.Lock()

    def get(self, certificate_id: str) -> CommittedCertificate | None:
        return self._entries.get(certificate_id)

    def put(self, entry: CommittedCertificate) -> None:
        with self._lock:
            self._entries[entry.certificate_id] = entry

    def delete(self, certificate_id: str) -> None:
        with self._lock:
            if certificate_id not in self._entries:
                raise KeyError(f"No certificate stored for certificate_id={certificate_id!r}")
            del self._entries[certificate_id]

    def list(self) -> list[CommittedCertificate]:
        snapshot = list(self._entries.values())
        return sorted(snapshot, key=lambda e: e.certificate_id)

    def __len__(self) -> int:
        return len(self._entries)


class FilesystemCertStore(CertStore):
    """Filesystem-backed certificate storage.

    Each identity is stored as ``<quoted-id>.json`` under *base_dir*,
    holding the PEM certificate, the optional key pair, the endpoint bindings
    and the modification time.

    Parameters
    ----------
    base_dir:
        Root directory for certificate storage. Created if missing.
    """

    _SUFFIX = ".json"

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # CertStore interface
    # ------------------------------------------------------------------

    def get(self, certificate_id: str) -> CommittedCertificate | None:
        path = self._entry_path(certificate_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return _decode_entry(json.loads(raw))

    def put(self, entry: CommittedCertificate) -> None:
        """Write the entry to a temporary file and atomically move it into place."""
        payload = json.dumps(_encode_entry(entry), indent=2)
        path = self._entry_path(entry.certificate_id)
        with self._write_lock:
            fd, tmp_name = tempfile.mkstemp(dir=self._base_dir, prefix=".tmp-", suffix=self._SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def delete(self, certificate_id: str) -> None:
        path = self._entry_path(certificate_id)
        with self._write_lock:
            try:
                path.unlink()
            except FileNotFoundError:
                raise KeyError(
                    f"No certificate stored for certificate_id={certificate_id!r}"
                ) from None

    def list(self) -> list[CommittedCertificate]:
        entries: list[CommittedCertificate] = []
        for path in self._base_dir.glob(f"*{self._SUFFIX}"):
            if path.name.startswith(".tmp-"):
                continue
            try:
                entries.append(_decode_entry(json.loads(path.read_text(encoding="utf-8"))))
            except FileNotFoundError:
                # Deleted between glob and read.
                continue
        return sorted(entries, key=lambda e: e.certificate_id)

    def exists(self, certificate_id: str) -> bool:
        return self._entry_path(certificate_id).exists()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _entry_path(self, certificate_id: str) -> Path:
        """Return the file path for *certificate_id*; the id is percent-quoted."""
        safe_name = urllib.parse.quote(certificate_id, safe="")
        return self._base_dir / f"{safe_name}{self._SUFFIX}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _encode_entry(entry: CommittedCertificate) -> dict[str, object]:
    key_pair = None
    if entry.key_pair is not None:
        key_pair = {
            "private_key": _b64(entry.key_pair.private_key),
            "public_key": _b64(entry.key_pair.public_key),
        }
    return {
        "certificate_id": entry.certificate_id,
        "certificate": {
            "type": entry.certificate.type.value,
            "certificate": _b64(entry.certificate.certificate),
        },
        "key_pair": key_pair,
        "endpoints": [ep.to_dict() for ep in entry.endpoints],
        "modification_time": entry.modification_time,
    }


def _decode_entry(data: dict[str, object]) -> CommittedCertificate:
    cert_data: dict[str, str] = data["certificate"]  # type: ignore[assignment]
    key_data: dict[str, str] | None = data.get("key_pair")  # type: ignore[assignment]
    endpoints: list[dict[str, str]] = data.get("endpoints") or []  # type: ignore[assignment]
    return CommittedCertificate(
        certificate_id=str(data["certificate_id"]),
        certificate=Certificate(
            type=CertificateType(cert_data["type"]),
            certificate=base64.b64decode(cert_data["certificate"]),
        ),
        key_pair=(
            KeyPair(
                private_key=base64.b64decode(key_data["private_key"]),
                public_key=base64.b64decode(key_data["public_key"]),
            )
            if key_data
            else None
        ),
        endpoints=tuple(
            Endpoint(type=EndpointType(ep["type"]), endpoint=ep["endpoint"]) for ep in endpoints
        ),
        modification_time=int(data["modification_time"]),  # type: ignore[arg-type]
    )


__all__ = ["CertStore", "FilesystemCertStore", "InMemoryCertStore"]
