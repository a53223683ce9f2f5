"""Development Certificate Authority.

Signing is performed outside the target in production: the caller takes the
CSR returned by GenerateCSR to its own CA. This self-signed CA fills that
role for tests, demos and lab targets, via :meth:`DevelopmentCA.sign_csr`
(target-generated keys) and :meth:`DevelopmentCA.issue` (caller-generated
keys).
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import NameOID

from certmgmt.certificates.models import CSR, Certificate, CertificateType, KeyPair
from certmgmt.errors import InvalidArgumentError


@dataclass
class DevelopmentCA:
    """Self-signed CA that signs device certificates.

    Parameters
    ----------
    ca_cert:
        The CA's own X.509 certificate.
    ca_key:
        The CA's RSA private key.
    """

    ca_cert: x509.Certificate
    ca_key: RSAPrivateKey

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def generate(
        cls,
        common_name: str = "certmgmt Development CA",
        organization: str = "certmgmt",
        validity_days: int = 3650,
        key_size: int = 2048,
    ) -> "DevelopmentCA":
        """Generate a new self-signed CA.

        Raises
        ------
        ValueError
            If ``key_size`` is less than 2048.
        """
        if key_size < 2048:
            raise ValueError(f"key_size must be at least 2048 bits, got {key_size}")
        ca_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        now = datetime.datetime.now(datetime.timezone.utc)

        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            ]
        )

        ca_cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .sign(ca_key, hashes.SHA256())
        )
        return cls(ca_cert=ca_cert, ca_key=ca_key)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def sign_csr(self, csr: CSR, validity_days: int = 365) -> Certificate:
        """Sign a CSR produced by the target.

        The issued certificate copies the CSR's subject and public key.

        Raises
        ------
        InvalidArgumentError
            If the CSR cannot be decoded or its signature is invalid.
        """
        try:
            request = x509.load_pem_x509_csr(csr.csr)
        except ValueError as exc:
            raise InvalidArgumentError(f"CSR is not valid PEM: {exc}") from exc
        if not request.is_signature_valid:
            raise InvalidArgumentError("CSR signature does not verify.")
        return self._issue_for(request.subject, request.public_key(), validity_days)

    def issue(
        self,
        common_name: str,
        validity_days: int = 365,
        key_size: int = 2048,
    ) -> tuple[Certificate, KeyPair]:
        """Generate a key pair off-target and issue a certificate for it."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        cert = self._issue_for(subject, key.public_key(), validity_days)
        return cert, KeyPair.from_private_key(key)

    def _issue_for(
        self, subject: x509.Name, public_key: object, validity_days: int
    ) -> Certificate:
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self.ca_cert.subject)
            .public_key(public_key)  # type: ignore[arg-type]
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(self.ca_key, hashes.SHA256())
        )
        return Certificate(
            type=CertificateType.CT_X509,
            certificate=cert.public_bytes(serialization.Encoding.PEM),
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def certificate(self) -> Certificate:
        """Return the CA certificate, e.g. for loading as a trust anchor."""
        return Certificate(
            type=CertificateType.CT_X509,
            certificate=self.ca_cert.public_bytes(serialization.Encoding.PEM),
        )

    def ca_key_pem(self) -> bytes:
        """Return PEM-encoded CA private key bytes (unencrypted)."""
        return self.ca_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @classmethod
    def from_pem(cls, cert_pem: bytes, key_pem: bytes) -> "DevelopmentCA":
        """Reconstruct a DevelopmentCA from PEM-encoded bytes."""
        from cryptography.hazmat.primitives.serialization import load_pem_private_key

        ca_cert = x509.load_pem_x509_certificate(cert_pem)
        ca_key = load_pem_private_key(key_pem, password=None)
        if not isinstance(ca_key, RSAPrivateKey):
            raise TypeError("CA key must be an RSA private key")
        return cls(ca_cert=ca_cert, ca_key=ca_key)


__all__ = ["DevelopmentCA"]
