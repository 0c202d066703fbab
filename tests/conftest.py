"""
Shared fixtures: a throwaway CA and a factory for leaf certificates it signs.
"""
import datetime
from datetime import timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from certificate_checker.models import CertificateRecord, CipherInfo, SourceKind

OCSP_URL = "http://ocsp.test.invalid"
CA_ISSUERS_URL = "http://ca.test.invalid/root.der"


def make_name(common_name=None, organization="Test Org"):
    attributes = []
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    if common_name:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


@pytest.fixture(scope="session")
def ca():
    key = ec.generate_private_key(ec.SECP256R1())
    name = make_name("Test Root CA")
    now = datetime.datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=365))
        .not_valid_after(now + datetime.timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert, key


@pytest.fixture(scope="session")
def make_cert(ca):
    """Builds a leaf certificate signed by the test CA."""
    ca_cert, ca_key = ca

    def _make(subject=None, issuer=None, not_before=None, not_after=None, days_valid=90,
              ocsp_url=None, ca_issuers_url=None, serial=None):
        key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.datetime.now(timezone.utc).replace(microsecond=0)
        not_before = not_before or now - datetime.timedelta(days=1)
        not_after = not_after or now + datetime.timedelta(days=days_valid, hours=1)
        builder = (
            x509.CertificateBuilder()
            .subject_name(make_name("example.com") if subject is None else subject)
            .issuer_name(ca_cert.subject if issuer is None else issuer)
            .public_key(key.public_key())
            .serial_number(serial or x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        descriptions = []
        if ocsp_url:
            descriptions.append(x509.AccessDescription(AuthorityInformationAccessOID.OCSP,
                                                       x509.UniformResourceIdentifier(ocsp_url)))
        if ca_issuers_url:
            descriptions.append(x509.AccessDescription(AuthorityInformationAccessOID.CA_ISSUERS,
                                                       x509.UniformResourceIdentifier(ca_issuers_url)))
        if descriptions:
            builder = builder.add_extension(x509.AuthorityInformationAccess(descriptions), critical=False)
        return builder.sign(ca_key, hashes.SHA256())

    return _make


@pytest.fixture
def write_cert(tmp_path):
    """Writes a certificate to a temporary file and returns its absolute path."""

    def _write(cert, name="cert.pem", encoding=serialization.Encoding.PEM):
        path = tmp_path / name
        path.write_bytes(cert.public_bytes(encoding))
        return str(path)

    return _write


def host_record(cert, version="TLSv1.3", chain_trusted=True, chain_error=None, hostname="example.com"):
    return CertificateRecord(
        kind=SourceKind.HOST, certificate=cert, hostname=hostname,
        cipher=CipherInfo(name="TLS_AES_256_GCM_SHA384", version=version, bits=256),
        chain_trusted=chain_trusted, chain_error=chain_error,
    )


def file_record(cert, path="/tmp/cert.pem"):
    return CertificateRecord(kind=SourceKind.FILE, certificate=cert, path=path)
