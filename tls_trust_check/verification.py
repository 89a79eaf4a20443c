from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass, field
from typing import Optional

from tls_trust_check.config import TrustConfig
from tls_trust_check.connection import SessionCache, VerifyMode
from tls_trust_check.diagnostics import (
    describe_bad_trusted_certs,
    describe_hostname_mismatch,
    describe_untrusted_certificate,
)
from tls_trust_check.endpoint import Endpoint
from tls_trust_check.hostname import certificate_matches_host
from tls_trust_check.trust_store import CertificateCheckResult, scan_trusted_certs


STAGE_TRUST_STORE = "trust_store"
STAGE_PEER = "peer_verification"
STAGE_HOSTNAME = "hostname_verification"


@dataclass(frozen=True)
class StageResult:
    stage: str
    status: str  # passed | failed | skipped
    summary: str
    diagnostic: Optional[str] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"


@dataclass
class CheckResult:
    endpoint: Endpoint
    stages: list[StageResult] = field(default_factory=list)
    bad_certificates: list[CertificateCheckResult] = field(default_factory=list)

    def stage(self, name: str) -> Optional[StageResult]:
        for s in self.stages:
            if s.stage == name:
                return s
        return None

    @property
    def success(self) -> bool:
        # Trust store findings are advisory; only the live checks decide the outcome.
        peer = self.stage(STAGE_PEER)
        hostname = self.stage(STAGE_HOSTNAME)
        return peer is not None and peer.passed and hostname is not None and hostname.passed

    @property
    def diagnostics(self) -> list[str]:
        return [s.diagnostic for s in self.stages if s.diagnostic]


def check_trust_store(trust: TrustConfig) -> tuple[StageResult, list[CertificateCheckResult]]:
    results = scan_trusted_certs(trust.trusted_certs_dir)
    bad = [r for r in results if r.error is not None]
    if not bad:
        return (
            StageResult(
                stage=STAGE_TRUST_STORE,
                status="passed",
                summary=f"Checked {len(results)} trusted certificate(s) in {trust.trusted_certs_dir!r}",
            ),
            bad,
        )
    return (
        StageResult(
            stage=STAGE_TRUST_STORE,
            status="failed",
            summary=f"{len(bad)} of {len(results)} trusted certificate(s) are invalid",
            diagnostic=describe_bad_trusted_certs(bad, trust),
        ),
        bad,
    )


def verify_peer(sessions: SessionCache, endpoint: Endpoint, trust: TrustConfig, logger: logging.Logger) -> StageResult:
    logger.info("Connecting to host %s:%s", endpoint.host, endpoint.port)
    session = sessions.get(endpoint, VerifyMode.VERIFY_PEER)
    try:
        session.handshake()
    except ssl.SSLError as exc:
        logger.debug("Verifying handshake with %s failed: %s", endpoint, exc)
        error = getattr(exc, "verify_message", None) or str(exc)
        return StageResult(
            stage=STAGE_PEER,
            status="failed",
            summary=f"The SSL certificate of {endpoint.host} could not be verified",
            diagnostic=describe_untrusted_certificate(sessions, endpoint, trust, error=error),
            error=error,
        )
    return StageResult(
        stage=STAGE_PEER,
        status="passed",
        summary=f"Certificate chain of {endpoint.host} verified (protocol={session.protocol_version()})",
    )


def verify_hostname(sessions: SessionCache, endpoint: Endpoint, logger: logging.Logger) -> StageResult:
    cert = sessions.get(endpoint, VerifyMode.VERIFY_PEER).peer_certificate()
    if cert is not None and certificate_matches_host(cert, endpoint.host):
        return StageResult(
            stage=STAGE_HOSTNAME,
            status="passed",
            summary=f"Certificate is valid for hostname {endpoint.host}",
        )
    error = "no peer certificate" if cert is None else f"certificate does not match hostname {endpoint.host!r}"
    logger.debug("Hostname check for %s failed: %s", endpoint, error)
    return StageResult(
        stage=STAGE_HOSTNAME,
        status="failed",
        summary="The SSL cert is signed by a trusted authority but is not valid for the given hostname",
        diagnostic=describe_hostname_mismatch(sessions, endpoint),
        error=error,
    )


def run_ssl_check(
    *,
    endpoint: Endpoint,
    trust: TrustConfig,
    sessions: SessionCache,
    logger: logging.Logger,
) -> CheckResult:
    """
    Run the trust store scan, chain verification and hostname verification in order.

    A failed chain verification skips the hostname check. TransportError propagates: without a
    connection there is nothing to diagnose.
    """
    result = CheckResult(endpoint=endpoint)

    trust_stage, bad = check_trust_store(trust)
    result.stages.append(trust_stage)
    result.bad_certificates = bad

    peer_stage = verify_peer(sessions, endpoint, trust, logger)
    result.stages.append(peer_stage)
    if not peer_stage.passed:
        result.stages.append(
            StageResult(
                stage=STAGE_HOSTNAME,
                status="skipped",
                summary="Hostname verification skipped because the certificate chain is not trusted",
            )
        )
        return result

    result.stages.append(verify_hostname(sessions, endpoint, logger))
    return result
