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
Validate certificates of one or many locations.

Locations are ``https://`` URLs, bare hostnames (optionally ``host:port``) or
absolute paths to PEM/DER certificate files. Each location yields exactly one
:class:`~certificate_checker.models.Verdict`; failures are reported inside the
verdict, never raised.
"""

import concurrent.futures
import csv
import datetime
import json
import logging
import sys
from datetime import timezone
from typing import List, Optional, Sequence

from certificate_checker.models import SourceKind, Verdict
from certificate_checker.rules import RuleConfig, apply_rules
from certificate_checker.sources import acquire, classify_location
from certificate_checker.utils.cert_utils import extract_dates, extract_identity

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING,
    "WARNING": logging.WARNING, "ERROR": logging.ERROR, "CRITICAL": logging.CRITICAL,
}


def get_log_level(name: str) -> int:
    """Maps a log level name (case-insensitive) to its logging constant, WARNING if unknown."""
    return LOG_LEVELS.get(str(name).upper(), logging.WARNING)


def validate_certificate(location: str, config: Optional[RuleConfig] = None) -> Verdict:
    """
    Validate the certificate found at ``location``.

    Returns an invalid verdict carrying the failure message when no certificate
    could be obtained. Unexpected errors while judging the certificate are added
    to the verdict's errors.
    """
    config = config or RuleConfig()
    verdict = Verdict(location=location)
    try:
        target = classify_location(location)
        logger.debug(f"Location '{location}' classified as {target.kind.value}")
        record, error = acquire(target)
        if error is not None:
            logger.error(f"Cannot validate {location}: {error.message}")
            verdict.errors.append(error.message)
            return verdict.freeze()

        cert = record.certificate
        dates = extract_dates(cert)
        identity = extract_identity(cert)
        verdict.cname = identity.cname
        verdict.issuer = identity.issuer
        verdict.days_remaining = dates.days_remaining
        verdict.valid_from = dates.valid_from
        verdict.valid_to = dates.valid_to
        verdict.serial_number = hex(cert.serial_number)
        if record.kind is SourceKind.HOST:
            verdict.cipher = record.cipher

        apply_rules(verdict, record, config, identity=identity)
    except Exception as e:
        logger.exception(f"Unexpected error while validating {location}: {e}")
        verdict.errors.append(f"Unexpected error: {e}")

    logger.info(f"{location}: {verdict.status}")
    return verdict.freeze()


def validate_all(locations: Sequence[str], config: Optional[RuleConfig] = None,
                 max_workers: Optional[int] = None) -> List[Verdict]:
    """
    Validate every location concurrently, one worker per location unless
    ``max_workers`` caps it. Verdicts are returned in input order.
    """
    if not locations:
        return []
    config = config or RuleConfig()
    start_time = datetime.datetime.now(timezone.utc)
    logger.info(f"Starting validation of {len(locations)} location(s): {', '.join(locations)}")

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers or len(locations)) as executor:
        futures = [executor.submit(validate_certificate, location, config) for location in locations]
        results = [future.result() for future in futures]

    elapsed = (datetime.datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Completed validation of {len(locations)} location(s) in {elapsed:.2f}s")
    return results


CSV_HEADERS = [
    "Location", "Valid", "Status", "Common Name", "Issuer", "Days Remaining", "Valid From", "Valid To",
    "TLS Version", "Cipher Suite", "OCSP Status", "Serial Number", "Errors", "Warnings", "Info", "Checked",
]


def write_json_report(results: List[Verdict], output: str) -> None:
    out = sys.stdout if output == "-" else open(output, "w", encoding='utf-8')
    try:
        json.dump([result.to_dict() for result in results], out, indent=2, ensure_ascii=False)
        out.write("\n")
    finally:
        if out is not sys.stdout:
            out.close()
            logger.info(f"JSON report written to {output}")


def write_csv_report(results: List[Verdict], output: str) -> None:
    out = sys.stdout if output == "-" else open(output, "w", newline='', encoding='utf-8')
    try:
        writer = csv.writer(out)
        writer.writerow(CSV_HEADERS)
        for result in results:
            writer.writerow([
                result.location, result.valid, result.status, result.cname or "", result.issuer or "",
                "" if result.days_remaining is None else result.days_remaining,
                result.valid_from or "", result.valid_to or "",
                result.cipher.version if result.cipher else "", result.cipher.name if result.cipher else "",
                result.ocsp.status if result.ocsp else "", result.serial_number or "",
                "; ".join(result.errors), "; ".join(result.warnings), "; ".join(result.info), result.checked,
            ])
    finally:
        if out is not sys.stdout:
            out.close()
            logger.info(f"CSV report written to {output}")


def run_analysis(locations: Sequence[str], output_json: Optional[str] = None, output_csv: Optional[str] = None,
                 config: Optional[RuleConfig] = None, max_workers: Optional[int] = None) -> List[Verdict]:
    """Validate the locations and write the requested JSON/CSV reports."""
    results = validate_all(locations, config=config, max_workers=max_workers)
    if output_json:
        write_json_report(results, output_json)
    if output_csv:
        write_csv_report(results, output_csv)
    return results
