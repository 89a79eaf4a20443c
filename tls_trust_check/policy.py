from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Optional, Protocol

from cryptography.hazmat.primitives.serialization import Encoding

from tls_trust_check.config import PolicyConfig, TrustConfig
from tls_trust_check.trust_store import load_certificate, trusted_certificate_paths


log = logging.getLogger(__name__)


class SSLPolicy(Protocol):
    """Configures trust anchors, protocol versions and ciphers on a context before use."""

    def apply(self, context: ssl.SSLContext) -> None:
        ...


def _load_trust(context: ssl.SSLContext, trust: TrustConfig) -> None:
    context.set_default_verify_paths()
    if trust.ca_file or trust.ca_path:
        context.load_verify_locations(cafile=trust.ca_file, capath=trust.ca_path)
    for path in trusted_certificate_paths(trust.trusted_certs_dir):
        # PEM or DER on disk; the context is always fed DER.
        try:
            with open(path, "rb") as f:
                cert = load_certificate(f.read())
            context.load_verify_locations(cadata=cert.public_bytes(Encoding.DER))
        except (OSError, ValueError) as exc:
            # Unusable entries are reported by the trust store scan.
            log.debug("Skipping trusted certificate %s: %s", path, exc)


@dataclass(frozen=True)
class DefaultSSLPolicy:
    trust: TrustConfig

    def apply(self, context: ssl.SSLContext) -> None:
        _load_trust(context, self.trust)


@dataclass(frozen=True)
class CustomSSLPolicy:
    trust: TrustConfig
    minimum_version: Optional[str] = None
    maximum_version: Optional[str] = None
    ciphers: Optional[str] = None

    def apply(self, context: ssl.SSLContext) -> None:
        _load_trust(context, self.trust)
        if self.minimum_version:
            context.minimum_version = getattr(ssl.TLSVersion, self.minimum_version)
        if self.maximum_version:
            context.maximum_version = getattr(ssl.TLSVersion, self.maximum_version)
        if self.ciphers:
            context.set_ciphers(self.ciphers)


def build_policy(policy_cfg: PolicyConfig, trust: TrustConfig) -> SSLPolicy:
    if policy_cfg.is_default:
        return DefaultSSLPolicy(trust=trust)
    return CustomSSLPolicy(
        trust=trust,
        minimum_version=policy_cfg.minimum_version,
        maximum_version=policy_cfg.maximum_version,
        ciphers=policy_cfg.ciphers,
    )
