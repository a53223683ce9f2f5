"""Tests for certmgmt.certificates.ca — DevelopmentCA."""
from __future__ import annotations

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509.oid import NameOID

from certmgmt.certificates.ca import DevelopmentCA
from certmgmt.certificates.csr import CSRGenerator, CSRParams
from certmgmt.certificates.models import CSR, CertificateType, certificate_matches_key
from certmgmt.errors import InvalidArgumentError


@pytest.fixture(scope="module")
def ca() -> DevelopmentCA:
    return DevelopmentCA.generate(common_name="Test CA", organization="TestOrg")


def _verify_signed_by(cert_pem: bytes, ca: DevelopmentCA) -> None:
    cert = x509.load_pem_x509_certificate(cert_pem)
    ca.ca_cert.public_key().verify(  # type: ignore[call-arg]
        cert.signature,
        cert.tbs_certificate_bytes,
        padding.PKCS1v15(),
        cert.signature_hash_algorithm,  # type: ignore[arg-type]
    )


class TestGenerate:
    def test_is_self_signed_ca(self, ca: DevelopmentCA) -> None:
        basic = ca.ca_cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert basic.value.ca is True
        assert ca.ca_cert.subject == ca.ca_cert.issuer

    def test_subject_fields(self, ca: DevelopmentCA) -> None:
        cn = ca.ca_cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "Test CA"

    def test_rejects_small_key(self) -> None:
        with pytest.raises(ValueError):
            DevelopmentCA.generate(key_size=1024)


class TestSignCSR:
    def test_signs_target_generated_csr(self, ca: DevelopmentCA) -> None:
        csr, key_pair = CSRGenerator().generate(CSRParams(common_name="dev-1"))
        cert = ca.sign_csr(csr)

        assert cert.type == CertificateType.CT_X509
        assert certificate_matches_key(cert, key_pair)
        _verify_signed_by(cert.certificate, ca)
        subject = cert.load_x509().subject
        assert subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "dev-1"

    def test_rejects_garbage_csr(self, ca: DevelopmentCA) -> None:
        with pytest.raises(InvalidArgumentError):
            ca.sign_csr(CSR(type=CertificateType.CT_X509, csr=b"not a csr"))


class TestIssue:
    def test_issue_returns_matching_pair(self, ca: DevelopmentCA) -> None:
        cert, key_pair = ca.issue("dev-9")
        assert certificate_matches_key(cert, key_pair)
        _verify_signed_by(cert.certificate, ca)

    def test_issued_certificate_is_not_ca(self, ca: DevelopmentCA) -> None:
        cert, _ = ca.issue("dev-9")
        basic = cert.load_x509().extensions.get_extension_for_class(x509.BasicConstraints)
        assert basic.value.ca is False


class TestSerialization:
    def test_pem_round_trip(self, ca: DevelopmentCA) -> None:
        restored = DevelopmentCA.from_pem(ca.certificate().certificate, ca.ca_key_pem())
        assert restored.ca_cert == ca.ca_cert
        cert, _ = restored.issue("dev-restored")
        _verify_signed_by(cert.certificate, ca)
