"""Certificate, key pair, endpoint and committed-entry value types.

Certificates travel as PEM bytes. The helpers here only decode PEM and
compare public keys; chain building and trust validation are left to the
consumers of the committed material.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from certmgmt.errors import InvalidArgumentError, UnimplementedError


class CertificateType(str, Enum):
    """Certificate encodings understood by the target."""

    CT_UNKNOWN = "CT_UNKNOWN"
    CT_X509 = "CT_X509"


class KeyType(str, Enum):
    """Key algorithms a caller may request for target-side key generation."""

    KT_UNKNOWN = "KT_UNKNOWN"
    KT_RSA = "KT_RSA"


class EndpointType(str, Enum):
    """Kinds of on-target entities that can use a certificate."""

    EP_UNSPECIFIED = "EP_UNSPECIFIED"
    EP_IPSEC_TUNNEL = "EP_IPSEC_TUNNEL"
    EP_DAEMON = "EP_DAEMON"


def _now_ns() -> int:
    return time.time_ns()


@dataclass(frozen=True)
class Endpoint:
    """An entity on the target bound to a certificate identity."""

    type: EndpointType
    endpoint: str

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type.value, "endpoint": self.endpoint}


@dataclass(frozen=True)
class Certificate:
    """A certificate of a given type. X.509 certificates are PEM encoded.

    Parameters
    ----------
    type:
        Encoding of *certificate*.
    certificate:
        Raw certificate bytes.
    """

    type: CertificateType
    certificate: bytes

    def load_x509(self) -> x509.Certificate:
        """Decode the certificate.

        Raises
        ------
        UnimplementedError
            If the certificate is not of type ``CT_X509``.
        InvalidArgumentError
            If the bytes are not a PEM-encoded X.509 certificate.
        """
        if self.type != CertificateType.CT_X509:
            raise UnimplementedError(
                f"Certificate type {self.type.value} is not supported."
            )
        try:
            return x509.load_pem_x509_certificate(self.certificate)
        except ValueError as exc:
            raise InvalidArgumentError(f"Certificate is not valid PEM: {exc}") from exc

    def fingerprint(self) -> str:
        """Return the SHA-256 fingerprint as lowercase hex."""
        return self.load_x509().fingerprint(hashes.SHA256()).hex()


@dataclass(frozen=True)
class CSR:
    """A PEM-encoded certificate signing request."""

    type: CertificateType
    csr: bytes


@dataclass(frozen=True)
class KeyPair:
    """A PEM-encoded private/public key pair."""

    private_key: bytes
    public_key: bytes

    def __repr__(self) -> str:
        return f"KeyPair(public_key={len(self.public_key)} bytes, private_key=<redacted>)"

    def load_private_key(self) -> PrivateKeyTypes:
        """Decode the private key.

        Raises
        ------
        InvalidArgumentError
            If the private key is not unencrypted PEM.
        """
        try:
            return serialization.load_pem_private_key(self.private_key, password=None)
        except (ValueError, TypeError) as exc:
            raise InvalidArgumentError(f"Private key is not valid PEM: {exc}") from exc

    def public_key_der(self) -> bytes:
        """Return the DER SubjectPublicKeyInfo derived from the private key."""
        return _spki_der(self.load_private_key().public_key())

    @classmethod
    def from_private_key(cls, key: PrivateKeyTypes) -> "KeyPair":
        """Build a PEM key pair from a private key object."""
        return cls(
            private_key=key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            public_key=key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            ),
        )


def _spki_der(public_key: object) -> bytes:
    return public_key.public_bytes(  # type: ignore[attr-defined]
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def certificate_matches_key(certificate: Certificate, key_pair: KeyPair) -> bool:
    """Return True if *certificate* carries the public half of *key_pair*."""
    cert_spki = _spki_der(certificate.load_x509().public_key())
    return cert_spki == key_pair.public_key_der()


@dataclass(frozen=True)
class CommittedCertificate:
    """The certificate currently installed for an identity.

    Parameters
    ----------
    certificate_id:
        The identity the certificate is bound to.
    certificate:
        The installed certificate.
    key_pair:
        Key material, or None when the key is held outside the target store.
    endpoints:
        Entities on the target using this certificate.
    modification_time:
        Install/rotate time in nanoseconds since the epoch.
    """

    certificate_id: str
    certificate: Certificate
    key_pair: KeyPair | None = None
    endpoints: tuple[Endpoint, ...] = ()
    modification_time: int = field(default_factory=_now_ns)


@dataclass(frozen=True)
class CertificateInfo:
    """Read-only view of a committed certificate, as returned by queries."""

    certificate_id: str
    certificate: Certificate
    endpoints: tuple[Endpoint, ...]
    modification_time: int

    @classmethod
    def from_committed(cls, entry: CommittedCertificate) -> "CertificateInfo":
        return cls(
            certificate_id=entry.certificate_id,
            certificate=entry.certificate,
            endpoints=entry.endpoints,
            modification_time=entry.modification_time,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "certificate_id": self.certificate_id,
            "certificate": {
                "type": self.certificate.type.value,
                "certificate": self.certificate.certificate.decode("ascii", errors="replace"),
            },
            "endpoints": [ep.to_dict() for ep in self.endpoints],
            "modification_time": self.modification_time,
        }


CABundle = tuple[Certificate, ...]


__all__ = [
    "CABundle",
    "CSR",
    "Certificate",
    "CertificateInfo",
    "CertificateType",
    "CommittedCertificate",
    "Endpoint",
    "EndpointType",
    "KeyPair",
    "KeyType",
    "certificate_matches_key",
]
