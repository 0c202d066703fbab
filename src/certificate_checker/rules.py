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
Validation rules and their configuration.

Rules annotate a :class:`~certificate_checker.models.Verdict` in a fixed order:
transport trust, identity, OCSP revocation, expiration, TLS version. The last
two only run while the verdict is still valid.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Mapping, Optional

from cryptography import x509

from certificate_checker.models import CertificateRecord, OCSPResult, Severity, SourceKind, Verdict
from certificate_checker.utils.cert_utils import Identity, extract_dates, extract_identity, get_ocsp_urls
from certificate_checker.utils.ocsp_utils import query_ocsp

LATEST_TLS_VERSION = "TLSv1.3"

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for unknown rules, unknown fields or invalid values in a rule configuration."""


@dataclass
class ExpirationRule:
    enabled: bool = True
    level: Severity = Severity.WARNING
    days: int = 14


@dataclass
class OCSPRule:
    enabled: bool = True
    level: Severity = Severity.ERROR
    failure_level: Severity = Severity.INFO


@dataclass
class TLSRule:
    enabled: bool = True
    level: Severity = Severity.WARNING


_FIELD_ALIASES = {"failureLevel": "failure_level"}


def _coerce(rule_name: str, name: str, value: Any, default: Any) -> Any:
    if isinstance(default, Severity):
        try:
            return Severity(value)
        except ValueError:
            raise ConfigError(f"{rule_name}.{name}: invalid severity {value!r} (expected error, warning or info)")
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{rule_name}.{name}: expected a boolean, got {value!r}")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{rule_name}.{name}: expected an integer, got {value!r}")
        return value
    return value


@dataclass
class RuleConfig:
    """Policy for the configurable rules; every field has a default."""
    expiration: ExpirationRule = field(default_factory=ExpirationRule)
    ocsp: OCSPRule = field(default_factory=OCSPRule)
    tls: TLSRule = field(default_factory=TLSRule)

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> "RuleConfig":
        """
        Builds a configuration from defaults plus per-rule overrides, e.g.
        ``{"expiration": {"days": 30}, "ocsp": {"failureLevel": "warning"}}``.
        """
        config = cls()
        rule_names = {f.name for f in fields(cls)}
        for rule_name, values in (overrides or {}).items():
            if rule_name not in rule_names:
                raise ConfigError(f"Unknown rule: {rule_name}")
            rule = getattr(config, rule_name)
            if not isinstance(values, Mapping):
                raise ConfigError(f"{rule_name}: expected a mapping of settings")
            known = {f.name for f in fields(rule)}
            for key, value in values.items():
                name = _FIELD_ALIASES.get(key, key)
                if name not in known:
                    raise ConfigError(f"Unknown setting for rule {rule_name}: {key}")
                setattr(rule, name, _coerce(rule_name, name, value, getattr(rule, name)))
        return config


OCSPQuery = Callable[[x509.Certificate], OCSPResult]


def _check_ocsp(verdict: Verdict, cert: x509.Certificate, rule: OCSPRule, ocsp_query: OCSPQuery) -> None:
    if not get_ocsp_urls(cert):
        logger.debug("No OCSP responder in certificate, skipping revocation check.")
        return
    result = ocsp_query(cert)
    verdict.ocsp = result
    if result.status == "revoked":
        message = "certificate revoked"
        if result.revocation_reason:
            message += f" ({result.revocation_reason})"
        verdict.annotate(rule.level, message)
    elif result.status == "error":
        verdict.annotate(rule.failure_level, f"OCSP check failed: {result.error}")
    elif result.status == "unknown":
        verdict.annotate(rule.failure_level, f"OCSP responder {result.responder} does not know this certificate")


def _check_expiration(verdict: Verdict, rule: ExpirationRule) -> None:
    days = verdict.days_remaining
    if days is None or days > rule.days:
        return
    if days < 0:
        verdict.annotate(rule.level, f"certificate expired {-days} days ago")
    else:
        verdict.annotate(rule.level, f"certificate expires in {days} days")


def _check_tls_version(verdict: Verdict, record: CertificateRecord, rule: TLSRule) -> None:
    version = record.cipher.version if record.cipher else None
    if version != LATEST_TLS_VERSION:
        verdict.annotate(rule.level, f"outdated TLS version {version or 'unknown'} (expected {LATEST_TLS_VERSION})")


def apply_rules(verdict: Verdict, record: CertificateRecord, config: RuleConfig,
                identity: Optional[Identity] = None, ocsp_query: Optional[OCSPQuery] = None) -> None:
    """Runs every rule against ``record`` and records the findings on ``verdict`` in place."""
    if record.kind is SourceKind.HOST and not record.chain_trusted:
        verdict.annotate(Severity.ERROR, record.chain_error)

    if identity is None:
        identity = extract_identity(record.certificate)
    for finding in identity.findings:
        verdict.annotate(Severity.ERROR, finding)

    if config.ocsp.enabled:
        _check_ocsp(verdict, record.certificate, config.ocsp, ocsp_query or query_ocsp)

    if config.expiration.enabled and verdict.valid:
        if verdict.days_remaining is None:
            verdict.days_remaining = extract_dates(record.certificate).days_remaining
        _check_expiration(verdict, config.expiration)

    if config.tls.enabled and record.kind is SourceKind.HOST and verdict.valid:
        _check_tls_version(verdict, record, config.tls)
