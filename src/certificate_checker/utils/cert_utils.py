# Certificate field helpers

import datetime
from dataclasses import dataclass, field
from datetime import timezone
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtensionOID, NameOID

PEM_MARKER = b"-----BEGIN CERTIFICATE-----"


@dataclass(frozen=True)
class CertificateDates:
    days_remaining: int
    valid_from: str
    valid_to: str


@dataclass
class Identity:
    cname: Optional[str] = None
    issuer: Optional[str] = None
    findings: List[str] = field(default_factory=list)


def load_certificate(data: bytes) -> x509.Certificate:
    """Parses certificate bytes as PEM when the PEM marker is present, DER otherwise."""
    if PEM_MARKER in data:
        return x509.load_pem_x509_certificate(data, default_backend())
    return x509.load_der_x509_certificate(data, default_backend())


def extract_dates(cert: x509.Certificate, now: Optional[datetime.datetime] = None) -> CertificateDates:
    """Whole days left until not-after (floored, negative once expired) and the validity window."""
    now_utc = now or datetime.datetime.now(timezone.utc)
    not_before_utc = cert.not_valid_before_utc
    not_after_utc = cert.not_valid_after_utc
    return CertificateDates(
        days_remaining=(not_after_utc - now_utc).days,
        valid_from=not_before_utc.isoformat(),
        valid_to=not_after_utc.isoformat(),
    )


def get_common_name(name: x509.Name) -> Optional[str]:
    """Returns the last Common Name attribute of a distinguished name."""
    cn_list = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return cn_list[-1].value if cn_list else None


def extract_identity(cert: x509.Certificate) -> Identity:
    """
    Extracts the subject and issuer common names.

    A missing subject or a subject without CN is an error finding, as is an
    issuer without CN. An empty issuer simply leaves ``issuer`` unset.
    """
    identity = Identity()

    if len(cert.subject) == 0:
        identity.findings.append("missing subject")
    else:
        identity.cname = get_common_name(cert.subject)
        if identity.cname is None:
            identity.findings.append("missing common name")

    if len(cert.issuer) > 0:
        identity.issuer = get_common_name(cert.issuer)
        if identity.issuer is None:
            identity.findings.append("missing issuer")

    return identity


def get_aia_urls(cert: x509.Certificate, access_method: x509.ObjectIdentifier) -> List[str]:
    """URIs listed in the Authority Information Access extension for the given method."""
    try:
        aia = cert.extensions.get_extension_for_oid(ExtensionOID.AUTHORITY_INFORMATION_ACCESS).value
    except x509.ExtensionNotFound:
        return []
    return [desc.access_location.value
            for desc in aia
            if desc.access_method == access_method and isinstance(desc.access_location, x509.UniformResourceIdentifier)]


def get_ocsp_urls(cert: x509.Certificate) -> List[str]:
    return get_aia_urls(cert, AuthorityInformationAccessOID.OCSP)


def get_ca_issuer_urls(cert: x509.Certificate) -> List[str]:
    return get_aia_urls(cert, AuthorityInformationAccessOID.CA_ISSUERS)
