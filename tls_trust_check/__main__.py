from __future__ import annotations

import argparse
import dataclasses
import os
import sys
from typing import Optional

from tls_trust_check.config import AppConfig, ConfigError, load_config
from tls_trust_check.connection import SessionCache, TransportError
from tls_trust_check.endpoint import InputError, parse_endpoint
from tls_trust_check.logging_utils import build_logger
from tls_trust_check.policy import build_policy
from tls_trust_check.reporting import write_json_report
from tls_trust_check.verification import STAGE_TRUST_STORE, run_ssl_check


EXIT_OK = 0
EXIT_VERIFY_FAILED = 1
EXIT_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tls-trust-check",
        description="Diagnose why a TLS connection to a server fails certificate validation.",
    )
    parser.add_argument("url", nargs="?", help="URL or host[:port] to check (default: server_url from config).")
    parser.add_argument("--config", help="Path to YAML/JSON config file.")
    parser.add_argument("--trusted-certs-dir", help="Directory of additional trusted certificates (*.crt, *.pem).")
    parser.add_argument("--ca-file", help="CA bundle file used for verification.")
    parser.add_argument("--ca-path", help="Hashed CA directory used for verification.")
    parser.add_argument("--timeout", type=float, help="Connect and handshake timeout in seconds.")
    parser.add_argument("--json-report", help="Write a JSON record of the run to this path.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser


def _apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    trust_overrides = {
        name: os.path.expanduser(value)
        for name, value in (
            ("trusted_certs_dir", args.trusted_certs_dir),
            ("ca_file", args.ca_file),
            ("ca_path", args.ca_path),
        )
        if value
    }
    if trust_overrides:
        cfg = dataclasses.replace(cfg, trust=dataclasses.replace(cfg.trust, **trust_overrides))
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError("--timeout must be >0.")
        cfg = dataclasses.replace(cfg, connection=dataclasses.replace(cfg.connection, timeout_seconds=args.timeout))
    if args.debug:
        cfg = dataclasses.replace(cfg, logging=dataclasses.replace(cfg.logging, level="DEBUG"))
    return cfg


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        cfg = _apply_overrides(load_config(args.config), args)
    except ConfigError as exc:
        build_logger().error("Invalid configuration: %s", exc)
        return EXIT_ERROR

    if cfg.logging.main_log:
        main_log_dir = os.path.dirname(cfg.logging.main_log)
        if main_log_dir:
            os.makedirs(main_log_dir, exist_ok=True)
    logger = build_logger(cfg.logging.main_log, cfg.logging.level, cfg.logging.file_level)

    given_uri = args.url or cfg.server_url
    logger.debug("Checking SSL cert on %s", given_uri)
    try:
        endpoint = parse_endpoint(given_uri)
    except InputError as exc:
        logger.error("%s", exc)
        parser.print_usage(sys.stderr)
        return EXIT_ERROR

    policy = build_policy(cfg.ssl_policy, cfg.trust)
    try:
        with SessionCache.for_policy(policy, timeout=cfg.connection.timeout_seconds) as sessions:
            result = run_ssl_check(endpoint=endpoint, trust=cfg.trust, sessions=sessions, logger=logger)
    except (TransportError, ConfigError) as exc:
        logger.error("%s", exc)
        return EXIT_ERROR

    for stage in result.stages:
        if stage.status == "failed":
            logger.error("[%s] %s", stage.stage, stage.summary)
        else:
            logger.info("[%s] %s", stage.stage, stage.summary)
        if stage.diagnostic:
            if stage.stage == STAGE_TRUST_STORE:
                logger.warning("\n%s", stage.diagnostic)
            else:
                logger.error("\n%s", stage.diagnostic)

    if args.json_report:
        write_json_report(args.json_report, result)
        logger.info("Wrote JSON report to %s", args.json_report)

    if not result.success:
        return EXIT_VERIFY_FAILED
    logger.info("Successfully verified certificates from `%s'", endpoint.host)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
