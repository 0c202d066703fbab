"""
Tests for the validation aggregator, the batch runner and the reports.
"""
import csv
import datetime
import http.client
import logging
import json
import socket
import threading
import time
from dataclasses import FrozenInstanceError
from datetime import timezone
from unittest.mock import patch

import pytest

from cryptography.hazmat.primitives import serialization

from certificate_checker import tls_checker
from certificate_checker.models import OCSPResult, SourceError, SourceErrorKind, Verdict
from certificate_checker.rules import RuleConfig
from certificate_checker.sources import NetworkSource
from certificate_checker.tls_checker import (get_log_level, validate_all, validate_certificate,
                                             write_csv_report, write_json_report)
from certificate_checker.utils import ocsp_utils
from conftest import CA_ISSUERS_URL, OCSP_URL, host_record, make_name


class TestValidateCertificate:

    def test_valid_file(self, make_cert, write_cert):
        cert = make_cert(days_valid=200)
        path = write_cert(cert)

        verdict = validate_certificate(path)

        assert verdict.location == path
        assert verdict.valid is True
        assert verdict.status == "ok"
        assert verdict.cname == "example.com"
        assert verdict.issuer == "Test Root CA"
        assert verdict.days_remaining == 200
        assert verdict.serial_number == hex(cert.serial_number)
        assert verdict.cipher is None
        assert verdict.ocsp is None
        assert verdict.errors == () and verdict.warnings == () and verdict.info == ()
        assert verdict.checked

    def test_repeated_validation_is_stable(self, make_cert, write_cert):
        path = write_cert(make_cert(subject=make_name(None), days_valid=3))

        first, second = validate_certificate(path), validate_certificate(path)

        for attribute in ("cname", "issuer", "valid_from", "valid_to", "errors", "warnings", "info"):
            assert getattr(first, attribute) == getattr(second, attribute)

    def test_returned_verdict_is_frozen(self, make_cert, write_cert):
        verdict = validate_certificate(write_cert(make_cert(days_valid=3)))

        assert isinstance(verdict.warnings, tuple)
        with pytest.raises(FrozenInstanceError):
            verdict.cname = "attacker.example.com"
        with pytest.raises(AttributeError):
            verdict.warnings.append("extra")
        assert verdict.status == "warning"

    def test_expired_file_warns(self, make_cert, write_cert):
        now = datetime.datetime.now(timezone.utc).replace(microsecond=0)
        path = write_cert(make_cert(not_before=now - datetime.timedelta(days=400),
                                    not_after=now - datetime.timedelta(days=30)))

        verdict = validate_certificate(path)

        assert verdict.valid is True
        assert verdict.status == "warning"
        assert verdict.days_remaining < 0
        assert len(verdict.warnings) == 1 and "expired" in verdict.warnings[0]

    def test_missing_common_name(self, make_cert, write_cert):
        verdict = validate_certificate(write_cert(make_cert(subject=make_name(None))))

        assert verdict.valid is False
        assert verdict.cname is None
        assert "missing common name" in verdict.errors

    def test_missing_file(self, tmp_path):
        verdict = validate_certificate(str(tmp_path / "nope.pem"))

        assert verdict.valid is False
        assert verdict.status == "invalid"
        assert len(verdict.errors) == 1
        assert verdict.cname is None and verdict.days_remaining is None and verdict.valid_to is None

    def test_unreachable_host(self):
        with patch.object(NetworkSource, '_handshake', side_effect=socket.timeout("timed out")):
            verdict = validate_certificate("https://unreachable.invalid/")

        assert verdict.valid is False
        assert verdict.errors == ("Connection to unreachable.invalid:443 timed out.",)
        assert verdict.cname is None
        assert verdict.cipher is None
        assert verdict.warnings == () and verdict.info == ()

    def test_untrusted_host(self, make_cert):
        record = host_record(make_cert(), chain_trusted=False,
                             chain_error="unable to get local issuer certificate")

        with patch.object(tls_checker, 'acquire', return_value=(record, None)):
            verdict = validate_certificate("https://untrusted-root.example.com/")

        assert verdict.valid is False
        assert verdict.status == "invalid"
        assert verdict.errors == ("unable to get local issuer certificate",)
        assert verdict.cname == "example.com"
        assert verdict.cipher.version == "TLSv1.3"

    def test_old_tls_version(self, make_cert):
        record = host_record(make_cert(), version="TLSv1.1")

        with patch.object(tls_checker, 'acquire', return_value=(record, None)):
            verdict = validate_certificate("tls-v1-1.example.com:1011")

        assert verdict.valid is True
        assert verdict.warnings == ("outdated TLS version TLSv1.1 (expected TLSv1.3)",)

    def test_revoked_host(self, make_cert):
        record = host_record(make_cert(ocsp_url=OCSP_URL))
        revoked = OCSPResult(status="revoked", responder=OCSP_URL)

        with patch.object(tls_checker, 'acquire', return_value=(record, None)), \
                patch('certificate_checker.rules.query_ocsp', return_value=revoked):
            verdict = validate_certificate("https://revoked.example.com/")

        assert verdict.valid is False
        assert verdict.errors == ("certificate revoked",)
        assert verdict.to_dict()["ocsp"]["status"] == "revoked"

    def test_ocsp_transport_failure_is_informational(self, make_cert, ca):
        record = host_record(make_cert(ocsp_url=OCSP_URL, ca_issuers_url=CA_ISSUERS_URL))
        issuer_der = ca[0].public_bytes(serialization.Encoding.DER)

        with patch.object(tls_checker, 'acquire', return_value=(record, None)), \
                patch.object(ocsp_utils, '_http_request', side_effect=[issuer_der, http.client.IncompleteRead(b"", 256)]):
            verdict = validate_certificate("https://flaky-responder.example.com/")

        assert verdict.valid is True
        assert verdict.errors == ()
        assert verdict.ocsp.status == "error"
        assert len(verdict.info) == 1 and verdict.info[0].startswith("OCSP check failed: OCSP query to")

    def test_issuer_fetch_reset_is_informational(self, make_cert):
        record = host_record(make_cert(ocsp_url=OCSP_URL, ca_issuers_url=CA_ISSUERS_URL))

        with patch.object(tls_checker, 'acquire', return_value=(record, None)), \
                patch.object(ocsp_utils, '_http_request', side_effect=ConnectionResetError(104, "Connection reset by peer")):
            verdict = validate_certificate("https://example.com/")

        assert verdict.valid is True
        assert verdict.info == ("OCSP check failed: Unable to retrieve issuer certificate for OCSP request",)

    def test_unexpected_error_is_folded_into_verdict(self, make_cert):
        record = host_record(make_cert(ocsp_url=OCSP_URL))

        with patch.object(tls_checker, 'acquire', return_value=(record, None)), \
                patch('certificate_checker.rules.query_ocsp', side_effect=RuntimeError("boom")):
            verdict = validate_certificate("https://example.com/")

        assert verdict.valid is False
        assert verdict.errors == ("Unexpected error: boom",)
        assert verdict.cname == "example.com"

    def test_source_error_message(self):
        error = SourceError(SourceErrorKind.CONNECTION_FAILED, "Connection refused by example.com:443.")

        with patch.object(tls_checker, 'acquire', return_value=(None, error)):
            verdict = validate_certificate("example.com")

        assert verdict.errors == ("Connection refused by example.com:443.",)


class TestValidateAll:

    def test_empty(self):
        assert validate_all([]) == []

    def test_preserves_input_order(self):
        delays = {"a": 0.2, "b": 0.0, "c": 0.1}

        def fake_validate(location, config):
            time.sleep(delays[location])
            return Verdict(location=location)

        with patch.object(tls_checker, 'validate_certificate', side_effect=fake_validate):
            results = validate_all(["a", "b", "c"])

        assert [result.location for result in results] == ["a", "b", "c"]

    def test_runs_all_locations_concurrently(self):
        locations = [f"host{i}.example.com" for i in range(5)]
        barrier = threading.Barrier(len(locations), timeout=5)

        def fake_validate(location, config):
            barrier.wait()
            return Verdict(location=location)

        with patch.object(tls_checker, 'validate_certificate', side_effect=fake_validate):
            results = validate_all(locations)

        assert [result.location for result in results] == locations

    def test_passes_config_and_survives_failures(self, tmp_path, make_cert, write_cert):
        good = write_cert(make_cert(days_valid=20))
        missing = str(tmp_path / "missing.pem")
        config = RuleConfig.from_mapping({"expiration": {"days": 30}})

        results = validate_all([missing, good], config=config)

        assert [result.status for result in results] == ["invalid", "warning"]


class TestReports:

    def setup_method(self):
        self.ok = Verdict(location="/tmp/a.pem", cname="a.example.com", days_remaining=90)
        self.bad = Verdict(location="b.example.com", errors=["Connection refused by b.example.com:443."])

    def test_json_report(self, tmp_path):
        path = tmp_path / "report.json"

        write_json_report([self.ok, self.bad], str(path))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert [entry["location"] for entry in data] == ["/tmp/a.pem", "b.example.com"]
        assert data[0]["valid"] is True and data[0]["status"] == "ok"
        assert data[1]["valid"] is False and data[1]["errors"] == ["Connection refused by b.example.com:443."]

    def test_csv_report(self, tmp_path):
        path = tmp_path / "report.csv"

        write_csv_report([self.ok, self.bad], str(path))

        with open(path, newline='', encoding='utf-8') as f:
            rows = list(csv.reader(f))
        assert rows[0] == tls_checker.CSV_HEADERS
        assert rows[1][:3] == ["/tmp/a.pem", "True", "ok"]
        assert rows[2][2] == "invalid"


def test_get_log_level():
    assert get_log_level("debug") == logging.DEBUG
    assert get_log_level("WARN") == logging.WARNING
    assert get_log_level("bogus") == logging.WARNING
