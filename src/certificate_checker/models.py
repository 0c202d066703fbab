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
Data model shared by the certificate sources, the rule engine and the CLI.

A location string is classified once into a :class:`Location`, resolved by a
source into a :class:`CertificateRecord`, and judged into a :class:`Verdict`.
"""

import datetime
from dataclasses import FrozenInstanceError, dataclass, field
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from cryptography import x509


class Severity(str, Enum):
    """Level at which a rule finding is reported."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class LocationKind(str, Enum):
    NETWORK_URL = "network-url"
    FILE_PATH = "file-path"
    BARE_HOSTNAME = "bare-hostname"


class SourceKind(str, Enum):
    FILE = "file"
    HOST = "host"


class SourceErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNREADABLE = "unreadable"
    PARSE_FAILURE = "parse_failure"
    CONNECTION_FAILED = "connection_failed"
    DNS_FAILURE = "dns_failure"
    TIMEOUT = "timeout"
    TLS_FAILURE = "tls_failure"
    INVALID_LOCATION = "invalid_location"


class SourceError(Exception):
    """Failure to obtain a certificate from a location."""

    def __init__(self, kind: SourceErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class Location:
    raw: str
    kind: LocationKind
    hostname: Optional[str] = None
    port: int = 443
    path: Optional[str] = None
    error: Optional[str] = None  # set when the location cannot be used as given


@dataclass(frozen=True)
class CipherInfo:
    """Negotiated protocol version and cipher suite of a TLS connection."""
    name: Optional[str]
    version: Optional[str]
    bits: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "bits": self.bits}


@dataclass
class CertificateRecord:
    """
    A certificate together with what its source knows about it.

    Host records carry the hostname, negotiated cipher and the transport's trust
    verdict; file records carry the path they were read from.
    """
    kind: SourceKind
    certificate: x509.Certificate
    hostname: Optional[str] = None
    cipher: Optional[CipherInfo] = None
    chain_trusted: Optional[bool] = None
    chain_error: Optional[str] = None
    path: Optional[str] = None

    def __post_init__(self):
        host_fields = (self.hostname, self.cipher, self.chain_trusted)
        if self.kind is SourceKind.HOST:
            if any(value is None for value in host_fields) or self.path is not None:
                raise ValueError("host records need hostname, cipher and chain_trusted only")
            if self.chain_trusted == (self.chain_error is not None):
                raise ValueError("chain_error must be set exactly when the chain is not trusted")
        else:
            if any(value is not None for value in host_fields) or self.chain_error is not None:
                raise ValueError("file records cannot carry transport fields")


@dataclass
class OCSPResult:
    """Outcome of an OCSP revocation query."""
    status: str  # good | revoked | unknown | error
    responder: Optional[str] = None
    revocation_time: Optional[str] = None
    revocation_reason: Optional[str] = None
    this_update: Optional[str] = None
    next_update: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status, "responder": self.responder,
            "revocation_time": self.revocation_time, "revocation_reason": self.revocation_reason,
            "this_update": self.this_update, "next_update": self.next_update, "error": self.error,
        }


def _now_iso() -> str:
    return datetime.datetime.now(timezone.utc).isoformat()


@dataclass
class Verdict:
    """
    Validation outcome for one location.

    ``valid`` is derived from ``errors`` so that a verdict is invalid exactly when
    it carries at least one error. Verdicts returned by the validator are frozen.
    """
    location: str
    cname: Optional[str] = None
    issuer: Optional[str] = None
    days_remaining: Optional[int] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    cipher: Optional[CipherInfo] = None
    ocsp: Optional[OCSPResult] = None
    serial_number: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)
    checked: str = field(default_factory=_now_iso)
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name, value):
        if self._frozen:
            raise FrozenInstanceError(f"cannot assign to field {name!r} of a frozen verdict")
        super().__setattr__(name, value)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        if not self.valid:
            return "invalid"
        if self.warnings:
            return "warning"
        return "ok"

    def annotate(self, level: Severity, message: str) -> None:
        """Attach a finding: errors invalidate, warnings and info only record."""
        if level is Severity.ERROR:
            self.errors.append(message)
        elif level is Severity.WARNING:
            self.warnings.append(message)
        else:
            self.info.append(message)

    def freeze(self) -> "Verdict":
        """Seal a finished verdict: findings become tuples and attributes read-only."""
        for name in ("errors", "warnings", "info"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(self, "_frozen", True)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location, "valid": self.valid, "status": self.status,
            "cname": self.cname, "issuer": self.issuer, "days_remaining": self.days_remaining,
            "valid_from": self.valid_from, "valid_to": self.valid_to,
            "cipher": self.cipher.to_dict() if self.cipher else None,
            "ocsp": self.ocsp.to_dict() if self.ocsp else None,
            "serial_number": self.serial_number,
            "errors": list(self.errors), "warnings": list(self.warnings), "info": list(self.info),
            "checked": self.checked,
        }
