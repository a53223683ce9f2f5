"""Target-side key generation and certificate signing request creation.

The generator produces a fresh key pair that satisfies the caller's minimum
key size, and a PEM CSR carrying the requested subject. The private key
never leaves the target through the CSR response; it is staged in the
transaction and committed alongside the signed certificate.
"""
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID

from certmgmt.certificates.models import CSR, CertificateType, KeyPair, KeyType
from certmgmt.errors import InvalidArgumentError, UnimplementedError

logger = logging.getLogger(__name__)

MIN_RSA_KEY_SIZE = 2048


@dataclass(frozen=True)
class CSRParams:
    """Parameters for a certificate signing request.

    Parameters
    ----------
    type:
        Certificate type the CSR is for. Only ``CT_X509`` is supported.
    min_key_size:
        Minimum key size in bits. Zero means "target default".
    key_type:
        Requested key algorithm. ``KT_UNKNOWN`` lets the target choose.
    common_name, country, state, city, organization, organizational_unit:
        Subject attributes; empty strings are omitted.
    ip_address:
        Optional IP address added as a subject alternative name.
    email_id:
        Optional e-mail address added to the subject.
    """

    type: CertificateType = CertificateType.CT_X509
    min_key_size: int = 0
    key_type: KeyType = KeyType.KT_UNKNOWN
    common_name: str = ""
    country: str = ""
    state: str = ""
    city: str = ""
    organization: str = ""
    organizational_unit: str = ""
    ip_address: str = ""
    email_id: str = ""


def _generate_rsa(key_size: int) -> PrivateKeyTypes:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


class CSRGenerator:
    """Generates key pairs and CSRs on the target.

    Parameters
    ----------
    enabled:
        Whether the target participates in key generation at all. When
        False every request fails with ``UNIMPLEMENTED`` and the caller must
        supply its own key pair.
    default_key_size:
        Key size used when the request asks for less.
    max_key_size:
        Largest key size the target will generate.
    """

    _KEY_FACTORIES: dict[KeyType, Callable[[int], PrivateKeyTypes]] = {
        KeyType.KT_RSA: _generate_rsa,
    }

    def __init__(
        self,
        enabled: bool = True,
        default_key_size: int = 2048,
        max_key_size: int = 8192,
    ) -> None:
        if default_key_size < MIN_RSA_KEY_SIZE:
            raise ValueError(
                f"default_key_size must be at least {MIN_RSA_KEY_SIZE} bits, got {default_key_size}"
            )
        if max_key_size < default_key_size:
            raise ValueError("max_key_size must not be smaller than default_key_size")
        self._enabled = enabled
        self._default_key_size = default_key_size
        self._max_key_size = max_key_size

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Capability query
    # ------------------------------------------------------------------

    def can_generate(
        self,
        key_type: KeyType = KeyType.KT_UNKNOWN,
        certificate_type: CertificateType = CertificateType.CT_X509,
        key_size: int = 0,
    ) -> bool:
        """Return True if :meth:`generate` would accept these parameters."""
        try:
            self._resolve(key_type, certificate_type, key_size)
        except UnimplementedError:
            return False
        return True

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self, params: CSRParams) -> tuple[CSR, KeyPair]:
        """Generate a key pair and a CSR signed with it.

        Parameters
        ----------
        params:
            Subject and key requirements.

        Returns
        -------
        tuple[CSR, KeyPair]
            The PEM CSR to return to the caller and the key pair to stage.

        Raises
        ------
        UnimplementedError
            If generation is disabled or the key/certificate type or size is
            unsupported.
        InvalidArgumentError
            If ``ip_address`` is not a valid address.
        """
        key_type, key_size = self._resolve(params.key_type, params.type, params.min_key_size)
        logger.debug("Generating %s key of %d bits", key_type.value, key_size)
        private_key = self._KEY_FACTORIES[key_type](key_size)

        builder = x509.CertificateSigningRequestBuilder().subject_name(_subject(params))
        if params.ip_address:
            try:
                ip = ipaddress.ip_address(params.ip_address)
            except ValueError as exc:
                raise InvalidArgumentError(f"Invalid ip_address: {exc}") from exc
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.IPAddress(ip)]), critical=False
            )

        request = builder.sign(private_key, hashes.SHA256())  # type: ignore[arg-type]
        csr = CSR(
            type=CertificateType.CT_X509,
            csr=request.public_bytes(serialization.Encoding.PEM),
        )
        return csr, KeyPair.from_private_key(private_key)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve(
        self, key_type: KeyType, certificate_type: CertificateType, min_key_size: int
    ) -> tuple[KeyType, int]:
        if not self._enabled:
            raise UnimplementedError("This target does not generate key pairs or CSRs.")
        if certificate_type != CertificateType.CT_X509:
            raise UnimplementedError(
                f"Certificate type {certificate_type.value} is not supported."
            )
        resolved = KeyType.KT_RSA if key_type == KeyType.KT_UNKNOWN else key_type
        if resolved not in self._KEY_FACTORIES:
            raise UnimplementedError(f"Key type {key_type.value} is not supported.")
        key_size = max(min_key_size, self._default_key_size)
        if key_size > self._max_key_size:
            raise UnimplementedError(
                f"Key size {min_key_size} exceeds the largest supported size "
                f"({self._max_key_size} bits)."
            )
        return resolved, key_size


def _subject(params: CSRParams) -> x509.Name:
    attributes = [
        (NameOID.COMMON_NAME, params.common_name),
        (NameOID.COUNTRY_NAME, params.country),
        (NameOID.STATE_OR_PROVINCE_NAME, params.state),
        (NameOID.LOCALITY_NAME, params.city),
        (NameOID.ORGANIZATION_NAME, params.organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, params.organizational_unit),
        (NameOID.EMAIL_ADDRESS, params.email_id),
    ]
    try:
        return x509.Name(
            [x509.NameAttribute(oid, value) for oid, value in attributes if value]
        )
    except ValueError as exc:
        # e.g. a country code that is not two characters
        raise InvalidArgumentError(f"Invalid CSR subject: {exc}") from exc


__all__ = ["CSRGenerator", "CSRParams", "MIN_RSA_KEY_SIZE"]
