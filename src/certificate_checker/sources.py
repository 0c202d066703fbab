# MIT License
#
# Author: Grégoire Compagnon (obeone) (https://github.com/obeone)
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Certificate sources.

A location string is classified once by :func:`classify_location` and then
resolved by the matching :class:`CertificateSource`. Sources return a
``(record, error)`` pair instead of raising, so callers always get a value.
"""

import logging
import socket
import ssl
from abc import ABC, abstractmethod
from typing import Optional, Tuple
from urllib.parse import urlparse

from certificate_checker.models import (CertificateRecord, CipherInfo, Location, LocationKind,
                                        SourceError, SourceErrorKind, SourceKind)
from certificate_checker.utils.cert_utils import load_certificate

CONNECT_TIMEOUT = 10
DEFAULT_PORT = 443
MAX_PORT = 65535
USER_AGENT = 'Python-CertificateChecker/1.0'

logger = logging.getLogger(__name__)

AcquireResult = Tuple[Optional[CertificateRecord], Optional[SourceError]]


def classify_location(raw: str) -> Location:
    """
    Classifies a location purely by its shape.

    ``https://`` URLs and absolute paths are recognised by prefix; anything else
    is a hostname, optionally followed by ``:port``. A port that cannot be used
    is kept as ``Location.error`` instead of being replaced by the default.
    """
    if raw.startswith("https://"):
        parsed = urlparse(raw)
        try:
            port = parsed.port or DEFAULT_PORT
        except ValueError as e:
            logger.warning(f"Invalid port in location '{raw}': {e}")
            return Location(raw=raw, kind=LocationKind.NETWORK_URL, hostname=parsed.hostname,
                            path=parsed.path or "/", error=f"Invalid port in location '{raw}': {e}")
        return Location(raw=raw, kind=LocationKind.NETWORK_URL, hostname=parsed.hostname,
                        port=port, path=parsed.path or "/")
    if raw.startswith("/"):
        return Location(raw=raw, kind=LocationKind.FILE_PATH, path=raw)

    host, port = raw, DEFAULT_PORT
    parts = raw.rsplit(':', 1)
    if len(parts) == 2 and parts[1].isdigit():
        host, port = parts[0], int(parts[1])
        if not 0 < port <= MAX_PORT:
            logger.warning(f"Invalid port in location '{raw}'")
            return Location(raw=raw, kind=LocationKind.BARE_HOSTNAME, hostname=host, path="/",
                            error=f"Invalid port in location '{raw}': port out of range 1-{MAX_PORT}")
    return Location(raw=raw, kind=LocationKind.BARE_HOSTNAME, hostname=host, port=port, path="/")


class CertificateSource(ABC):
    """Resolves a classified location into a certificate record."""

    @abstractmethod
    def acquire(self, location: Location) -> AcquireResult:
        pass


class FileSource(CertificateSource):
    """Reads a PEM or DER encoded certificate from the local filesystem."""

    def acquire(self, location: Location) -> AcquireResult:
        path = location.path
        logger.debug(f"Reading certificate file {path}")
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except FileNotFoundError:
            return None, SourceError(SourceErrorKind.NOT_FOUND, f"Certificate file not found: {path}")
        except OSError as e:
            return None, SourceError(SourceErrorKind.UNREADABLE, f"Could not read certificate file {path}: {e.strerror or e}")

        try:
            cert = load_certificate(data)
        except ValueError as e:
            return None, SourceError(SourceErrorKind.PARSE_FAILURE, f"Could not parse certificate file {path}: {e}")
        logger.info(f"Loaded certificate from {path}")
        return CertificateRecord(kind=SourceKind.FILE, certificate=cert, path=path), None


class NetworkSource(CertificateSource):
    """
    Fetches the leaf certificate presented by a TLS server.

    Chain trust is reported, not enforced: when the verifying handshake fails on
    certificate verification, the certificate is fetched again over an
    unverified handshake and the verifier's message is kept as ``chain_error``.
    Only that second handshake accepts legacy protocols and weak keys; a server
    the default context refuses outright is retried the same way and reported as
    untrusted.
    """

    def __init__(self, timeout: int = CONNECT_TIMEOUT):
        self.timeout = timeout

    def _create_context(self, verify: bool) -> ssl.SSLContext:
        if verify:
            return ssl.create_default_context()
        context = ssl._create_unverified_context()
        # Legacy protocol versions must still complete so they can be reported.
        try:
            context.minimum_version = ssl.TLSVersion.MINIMUM_SUPPORTED
        except (AttributeError, ValueError):
            logger.debug("Could not lower minimum TLS version on context.")
        try:
            context.set_ciphers("DEFAULT:@SECLEVEL=0")
        except ssl.SSLError:
            logger.debug("Could not lower OpenSSL security level on context.")
        return context

    def _send_head(self, ssock: ssl.SSLSocket, host: str, port: int, path: str) -> None:
        host_header = host if port == DEFAULT_PORT else f"{host}:{port}"
        request = (f"HEAD {path} HTTP/1.1\r\nHost: {host_header}\r\n"
                   f"User-Agent: {USER_AGENT}\r\nConnection: close\r\n\r\n")
        ssock.sendall(request.encode('ascii'))
        status_line = ssock.recv(1024).split(b"\r\n", 1)[0]
        logger.debug(f"HEAD response from {host_header}: {status_line.decode('latin-1', 'replace')}")

    def _handshake(self, host: str, port: int, path: str, verify: bool) -> Tuple[Optional[bytes], CipherInfo]:
        context = self._create_context(verify)
        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                der_cert = ssock.getpeercert(binary_form=True)
                details = ssock.cipher()
                cipher = CipherInfo(name=details[0] if details else None, version=ssock.version(),
                                    bits=details[2] if details else None)
                self._send_head(ssock, host, port, path)
        return der_cert, cipher

    def acquire(self, location: Location) -> AcquireResult:
        if location.error:
            return None, SourceError(SourceErrorKind.INVALID_LOCATION, location.error)
        host, port = location.hostname, location.port
        if not host:
            return None, SourceError(SourceErrorKind.CONNECTION_FAILED, f"No hostname in location '{location.raw}'")

        logger.debug(f"Connecting to {host}:{port} to fetch certificate and connection info...")
        path = location.path or "/"
        chain_error = None
        try:
            try:
                der_cert, cipher = self._handshake(host, port, path, verify=True)
            except ssl.SSLCertVerificationError as e:
                chain_error = getattr(e, 'verify_message', None) or str(e)
                logger.warning(f"Certificate verification failed for {host}:{port}: {chain_error}. Fetching unverified.")
                der_cert, cipher = self._handshake(host, port, path, verify=False)
            except ssl.SSLError as e:
                # The server only speaks protocols or ciphers the default context refuses.
                chain_error = f"TLS handshake rejected by default security policy: {getattr(e, 'reason', None) or e}"
                logger.warning(f"Verifying handshake with {host}:{port} failed: {e}. Retrying with legacy settings.")
                der_cert, cipher = self._handshake(host, port, path, verify=False)
        except socket.timeout:
            return None, SourceError(SourceErrorKind.TIMEOUT, f"Connection to {host}:{port} timed out.")
        except socket.gaierror:
            return None, SourceError(SourceErrorKind.DNS_FAILURE, f"Could not resolve domain name: {host}")
        except ConnectionRefusedError:
            return None, SourceError(SourceErrorKind.CONNECTION_FAILED, f"Connection refused by {host}:{port}.")
        except ssl.SSLError as e:
            return None, SourceError(SourceErrorKind.TLS_FAILURE, f"An SSL error occurred connecting to {host}:{port}: {e}")
        except OSError as e:
            return None, SourceError(SourceErrorKind.CONNECTION_FAILED, f"Network/OS error connecting to {host}:{port}: {e}")

        if der_cert is None:
            return None, SourceError(SourceErrorKind.PARSE_FAILURE, f"No certificate received from server {host}:{port}.")
        try:
            cert = load_certificate(der_cert)
        except ValueError as e:
            return None, SourceError(SourceErrorKind.PARSE_FAILURE, f"Could not parse certificate from {host}:{port}: {e}")

        logger.info(f"Connection info for {host}:{port}: TLS={cipher.version}, Cipher={cipher.name}")
        record = CertificateRecord(kind=SourceKind.HOST, certificate=cert, hostname=host, cipher=cipher,
                                   chain_trusted=chain_error is None, chain_error=chain_error)
        return record, None


def get_source(location: Location) -> CertificateSource:
    if location.kind is LocationKind.FILE_PATH:
        return FileSource()
    return NetworkSource()


def acquire(location: Location) -> AcquireResult:
    """Resolves a classified location with the source matching its kind."""
    return get_source(location).acquire(location)
