# OCSP revocation querying logic

import http.client
import logging
import socket
import urllib.error
import urllib.request
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp

from certificate_checker.models import OCSPResult
from certificate_checker.utils.cert_utils import get_ca_issuer_urls, get_ocsp_urls, load_certificate

OCSP_TIMEOUT = 10
AIA_TIMEOUT = 10
USER_AGENT = 'Python-CertificateChecker/1.0'

logger = logging.getLogger(__name__)


def _http_request(url: str, data: Optional[bytes] = None, headers: Optional[dict] = None, timeout: int = OCSP_TIMEOUT) -> bytes:
    """Performs a GET (or POST when data is given) and returns the body; raises on failure."""
    req = urllib.request.Request(url, data=data, headers={'User-Agent': USER_AGENT, **(headers or {})})
    with urllib.request.urlopen(req, timeout=timeout) as response:
        if response.status != 200:
            raise urllib.error.HTTPError(url, response.status, f"unexpected status {response.status}", response.headers, None)
        return response.read()


def fetch_issuer_certificate(cert: x509.Certificate) -> Optional[x509.Certificate]:
    """Downloads the issuing CA certificate referenced by the AIA caIssuers entries."""
    for url in get_ca_issuer_urls(cert):
        logger.debug(f"Fetching issuer certificate from AIA URL: {url}")
        try:
            return load_certificate(_http_request(url, timeout=AIA_TIMEOUT))
        except urllib.error.URLError as e:
            logger.warning(f"Failed to fetch issuer certificate from {url}: {e}")
        except socket.timeout:
            logger.warning(f"Timeout fetching issuer certificate from {url}")
        except (OSError, http.client.HTTPException) as e:
            logger.warning(f"Network error fetching issuer certificate from {url}: {e}")
        except ValueError as e:
            logger.warning(f"Could not parse issuer certificate from {url}: {e}")
    return None


def _parse_response(cert: x509.Certificate, data: bytes, url: str) -> OCSPResult:
    try:
        response = ocsp.load_der_ocsp_response(data)
    except ValueError as e:
        logger.warning(f"Failed to parse OCSP response from {url}: {e}")
        return OCSPResult(status="error", responder=url, error=f"Invalid OCSP response from {url}")

    if response.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
        return OCSPResult(status="error", responder=url,
                          error=f"OCSP responder {url} answered {response.response_status.name}")

    # Single-response accessors raise ValueError when the responder answers for several certificates.
    try:
        if response.serial_number != cert.serial_number:
            return OCSPResult(status="error", responder=url,
                              error=f"OCSP responder {url} answered for another certificate")
        result = OCSPResult(
            status=response.certificate_status.name.lower(), responder=url,
            this_update=response.this_update_utc.isoformat(),
            next_update=response.next_update_utc.isoformat() if response.next_update_utc else None,
        )
        if response.certificate_status == ocsp.OCSPCertStatus.REVOKED:
            result.revocation_time = response.revocation_time_utc.isoformat()
            if response.revocation_reason is not None:
                result.revocation_reason = response.revocation_reason.name
    except ValueError as e:
        logger.warning(f"Unusable OCSP response from {url}: {e}")
        return OCSPResult(status="error", responder=url, error=f"Unusable OCSP response from {url}: {e}")

    if result.status == "revoked":
        logger.warning(f"Certificate S/N {hex(cert.serial_number)} IS REVOKED according to {url}")
    return result


def query_ocsp(cert: x509.Certificate, issuer: Optional[x509.Certificate] = None) -> OCSPResult:
    """
    Asks the certificate's OCSP responder for its revocation status.

    Failures (no responder, issuer unavailable, network or parse errors) are
    returned as a result with status ``error`` rather than raised.
    """
    urls = get_ocsp_urls(cert)
    if not urls:
        return OCSPResult(status="error", error="No OCSP responder listed in certificate")
    url = urls[0]

    if issuer is None:
        issuer = fetch_issuer_certificate(cert)
    if issuer is None:
        return OCSPResult(status="error", responder=url, error="Unable to retrieve issuer certificate for OCSP request")

    request = ocsp.OCSPRequestBuilder().add_certificate(cert, issuer, hashes.SHA1()).build()
    headers = {'Content-Type': 'application/ocsp-request', 'Accept': 'application/ocsp-response'}
    logger.debug(f"Querying OCSP responder {url} for S/N {hex(cert.serial_number)}")
    try:
        data = _http_request(url, data=request.public_bytes(serialization.Encoding.DER), headers=headers)
    except urllib.error.URLError as e:
        logger.warning(f"OCSP query to {url} failed: {e}")
        return OCSPResult(status="error", responder=url, error=f"OCSP query to {url} failed: {e}")
    except socket.timeout:
        logger.warning(f"OCSP query to {url} timed out")
        return OCSPResult(status="error", responder=url, error=f"OCSP query to {url} timed out")
    except (OSError, http.client.HTTPException) as e:
        logger.warning(f"Network error querying OCSP responder {url}: {e}")
        return OCSPResult(status="error", responder=url, error=f"OCSP query to {url} failed: {e}")

    return _parse_response(cert, data, url)
