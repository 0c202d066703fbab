# src/certificate_checker/main.py

import argparse
import json
import logging
import sys
from typing import List

import coloredlogs
import shtab

from certificate_checker import __version__
from certificate_checker.models import Severity, Verdict
from certificate_checker.rules import ConfigError, RuleConfig
from certificate_checker.tls_checker import get_log_level, run_analysis

SEVERITIES = [severity.value for severity in Severity]


def print_human_summary(results: List[Verdict]) -> None:
    """
    Print one colorized line per location, followed by its findings.

    Parameters:
        results (list): Verdicts in the order the locations were given.
    """
    for result in results:
        if result.status == "ok":
            icon, status = '\033[92m ✔ \033[0m', '\033[92mok\033[0m'
        elif result.status == "warning":
            icon, status = '\033[93m ⚠ \033[0m', '\033[93mwarning\033[0m'
        else:
            icon, status = '\033[91m ✖ \033[0m', '\033[91minvalid\033[0m'

        details = []
        if result.cname:
            details.append(f"CN={result.cname}")
        if result.days_remaining is not None:
            details.append(f"{result.days_remaining} days remaining")
        if result.cipher and result.cipher.version:
            details.append(result.cipher.version)
        detail_text = f" \033[90m({', '.join(details)})\033[0m" if details else ""
        print(f"{icon}\033[1m{result.location}\033[0m {status}{detail_text}")

        for error in result.errors:
            print(f"     \033[91merror  : {error}\033[0m")
        for warning in result.warnings:
            print(f"     \033[93mwarning: {warning}\033[0m")
        for note in result.info:
            print(f"     \033[94minfo   : {note}\033[0m")


def create_parser():
    '''
    Create and configure the argument parser for certificate-checker.

    Returns:
        argparse.ArgumentParser: The configured argument parser.
    '''
    parser = argparse.ArgumentParser(
        description="Check the certificates at the given location(s).",
        epilog="Example: certificate-checker example.org https://example.com:8443/ /etc/ssl/cert.pem -j report.json"
    )
    parser.add_argument(
        '--version',
        '-V',
        action='version',
        version=f'%(prog)s {__version__}',
        help="Show program's version number and exit"
    )
    parser.add_argument('locations', nargs='+',
                        help='URLs (https://host[:port]/), hostnames (host[:port]) or local certificate paths')
    parser.add_argument('-j', '--json', type=str, metavar='FILE',
                        help='Output JSON report to FILE (use "-" for stdout)', default=None)
    parser.add_argument('-c', '--csv', type=str, metavar='FILE',
                        help='Output CSV report to FILE (use "-" for stdout)', default=None)
    parser.add_argument('-l', '--loglevel', type=str, choices=['DEBUG', 'INFO', 'WARN', 'ERROR', 'CRITICAL'], default='WARN',
                        help='Set log level (default: WARN)')
    parser.add_argument('--max-workers', type=int, default=None, metavar='N',
                        help='Maximum number of locations checked at the same time (default: all at once)')

    rules = parser.add_argument_group('Rule Options')
    rules.add_argument('--config', type=str, metavar='FILE',
                       help='JSON file with rule overrides, e.g. {"expiration": {"days": 30}}')
    rules.add_argument('--expiration-days', type=int, metavar='DAYS',
                       help='Report certificates expiring within DAYS days (default: 14)')
    rules.add_argument('--expiration-level', choices=SEVERITIES, help='Severity of the expiration finding (default: warning)')
    rules.add_argument('--no-expiration', action='store_true', help='Disable the expiration rule')
    rules.add_argument('--ocsp-level', choices=SEVERITIES, help='Severity of a revoked certificate (default: error)')
    rules.add_argument('--ocsp-failure-level', choices=SEVERITIES,
                       help='Severity of a failed OCSP query (default: info)')
    rules.add_argument('--no-ocsp', action='store_true', help='Disable the OCSP revocation check')
    rules.add_argument('--tls-level', choices=SEVERITIES, help='Severity of an outdated TLS version (default: warning)')
    rules.add_argument('--no-tls-check', action='store_true', help='Disable the TLS version rule')

    exit_group = parser.add_argument_group('Exit Code Options')
    exit_group.add_argument('--no-fail-on-invalid', action='store_true',
                            help='Exit with status 0 even when a certificate is invalid')
    exit_group.add_argument('--fail-on-warnings', action='store_true',
                            help='Exit with status 1 when any certificate has warnings')

    shtab.add_argument_to(parser, ['--print-completion'])
    return parser


def build_config(args) -> RuleConfig:
    """Defaults, then the --config file, then command-line flags."""
    overrides = {}
    if args.config:
        with open(args.config, encoding='utf-8') as f:
            overrides = json.load(f)
        if not isinstance(overrides, dict):
            raise ConfigError(f"{args.config}: expected a JSON object")

    flag_overrides = {
        "expiration": {"days": args.expiration_days, "level": args.expiration_level},
        "ocsp": {"level": args.ocsp_level, "failure_level": args.ocsp_failure_level},
        "tls": {"level": args.tls_level},
    }
    for rule_name, disabled in (("expiration", args.no_expiration), ("ocsp", args.no_ocsp), ("tls", args.no_tls_check)):
        if disabled:
            flag_overrides[rule_name]["enabled"] = False

    merged = {}
    for rule_name, values in overrides.items():
        if not isinstance(values, dict):
            raise ConfigError(f"{rule_name}: expected a mapping of settings")
        merged[rule_name] = dict(values)
    for rule_name, values in flag_overrides.items():
        for key, value in values.items():
            if value is not None:
                merged.setdefault(rule_name, {})[key] = value
    return RuleConfig.from_mapping(merged)


def exit_code(results: List[Verdict], fail_on_invalid: bool = True, fail_on_warnings: bool = False) -> int:
    if fail_on_invalid and any(not result.valid for result in results):
        return 1
    if fail_on_warnings and any(result.warnings for result in results):
        return 1
    return 0


def setup_logging(level_name: str) -> None:
    loglevel = get_log_level(level_name)
    log_format = '%(asctime)s [%(levelname)-8s] %(name)s: %(message)s' if loglevel > logging.DEBUG else '%(asctime)s [%(levelname)-8s] %(name)s (%(filename)s:%(lineno)d): %(message)s'
    logger = logging.getLogger("certificate_checker")
    logger.propagate = False
    if not logger.hasHandlers():
        if hasattr(sys.stderr, 'isatty') and sys.stderr.isatty():
            coloredlogs.install(level=loglevel, logger=logger, fmt=log_format, stream=sys.stderr)
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(log_format))
            logger.addHandler(handler)
    logger.setLevel(loglevel)


def main(argv=None):
    """
    Parse command-line arguments, validate every location and exit with a
    status reflecting the verdicts.
    """
    parser = create_parser()
    # shtab handles --print-completion here and exits if it's present
    args = parser.parse_args(argv)
    setup_logging(args.loglevel)

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        parser.error(f"invalid rule configuration: {e}")

    results = run_analysis(args.locations, output_json=args.json, output_csv=args.csv,
                           config=config, max_workers=args.max_workers)
    if not args.json and not args.csv:
        print_human_summary(results)

    sys.exit(exit_code(results, fail_on_invalid=not args.no_fail_on_invalid,
                       fail_on_warnings=args.fail_on_warnings))


if __name__ == "__main__":
    main()
