from __future__ import annotations

import logging
import ssl
from typing import Iterable, Optional

from tls_trust_check.config import TrustConfig
from tls_trust_check.connection import SessionCache, TLSSession, VerifyMode
from tls_trust_check.endpoint import Endpoint
from tls_trust_check.hostname import common_name, subject_alt_dns_names
from tls_trust_check.trust_store import CertificateCheckResult


log = logging.getLogger(__name__)


def ssl_library_info() -> str:
    paths = ssl.get_default_verify_paths()
    return (
        "OpenSSL Configuration:\n"
        f"* Version: {ssl.OPENSSL_VERSION}\n"
        f"* Certificate file: {paths.openssl_cafile}\n"
        f"* Certificate directory: {paths.openssl_capath}\n"
    )


def trust_config_info(trust: TrustConfig) -> str:
    return (
        "TLS Check Configuration:\n"
        f"* ca_path: {trust.ca_path!r}\n"
        f"* ca_file: {trust.ca_file!r}\n"
        f"* trusted_certs_dir: {trust.trusted_certs_dir!r}\n"
    )


def configuration_info(trust: TrustConfig) -> str:
    return "Configuration Info:\n\n" + ssl_library_info() + trust_config_info(trust)


def _trust_dir_advice(trust: TrustConfig) -> str:
    return (
        "Copy the server's certificate (PEM) to your trusted_certs_dir "
        f"(currently: {trust.trusted_certs_dir})\n"
        "using SSH/SCP or some other secure method, then re-run this check to confirm\n"
        "that the server's certificate is now trusted.\n"
    )


def describe_bad_trusted_certs(results: Iterable[CertificateCheckResult], trust: TrustConfig) -> str:
    bad = [r for r in results if r.error is not None]
    lines = "".join(f"{r.path}: {r.error}\n" for r in bad)
    return (
        configuration_info(trust)
        + "\nThere are invalid certificates in your trusted_certs_dir.\n"
        "OpenSSL will not use the following certificates when verifying SSL connections:\n\n"
        + lines
        + "\nTO FIX THESE WARNINGS:\n\n"
        "If the certificate is generated by the server, you may try redownloading the\n"
        "server's certificate and replacing the file(s) listed above.\n"
        + _trust_dir_advice(trust)
    )


def _diagnostic_session(sessions: SessionCache, endpoint: Endpoint) -> TLSSession:
    session = sessions.get(endpoint, VerifyMode.VERIFY_NONE)
    session.handshake()
    return session


def describe_untrusted_certificate(
    sessions: SessionCache,
    endpoint: Endpoint,
    trust: TrustConfig,
    error: Optional[str] = None,
) -> str:
    """Explain a failed chain verification. Never raises."""
    header = f"The SSL certificate of {endpoint.host} could not be verified\n"
    if error:
        header += f"Verification error: {error}\n"

    try:
        session = _diagnostic_session(sessions, endpoint)
        cert = session.peer_certificate()
        if cert is None:
            issuer_line = "Certificate issuer data: <server presented no certificate>\n"
        else:
            issuer_line = f"Certificate issuer data: {cert.issuer.rfc4514_string()}\n"
        session_line = (
            f"Negotiated without verification: protocol={session.protocol_version()} "
            f"cipher={session.cipher_name()}\n"
        )
    except Exception as exc:  # noqa: BLE001 - best-effort diagnosis
        log.debug("Diagnostic reconnection to %s failed", endpoint, exc_info=True)
        issuer_line = f"Certificate issuer data: <unavailable: {type(exc).__name__}: {exc}>\n"
        session_line = ""

    return (
        header
        + issuer_line
        + session_line
        + "\n"
        + configuration_info(trust)
        + "\nTO FIX THIS ERROR:\n\n"
        "If the server you are connecting to uses a self-signed certificate, you must\n"
        "configure this machine to trust that server's certificate.\n\n"
        + _trust_dir_advice(trust)
    )


def describe_hostname_mismatch(sessions: SessionCache, endpoint: Endpoint) -> str:
    """Explain a certificate that is trusted but issued for another name. Never raises."""
    host = endpoint.host
    header = "The SSL cert is signed by a trusted authority but is not valid for the given hostname\n"

    alt_names: list[str] = []
    try:
        cert = _diagnostic_session(sessions, endpoint).peer_certificate()
        if cert is None:
            cn = None
            failure = "server presented no certificate"
        else:
            cn = common_name(cert)
            alt_names = subject_alt_dns_names(cert)
            failure = None
    except Exception as exc:  # noqa: BLE001 - best-effort diagnosis
        log.debug("Diagnostic reconnection to %s failed", endpoint, exc_info=True)
        cn = None
        failure = f"{type(exc).__name__}: {exc}"

    text = header + f"You are attempting to connect to:   '{host}'\n"
    if cn is None:
        if failure is not None:
            text += f"The server's certificate could not be inspected: {failure}\n"
        else:
            text += "Unknown certificate owner: no CN found in the certificate subject\n"
        if alt_names:
            text += f"The certificate's subject alternative names are: {', '.join(alt_names)}\n"
        return (
            text + "\nTO FIX THIS ERROR:\n\n"
            f"Make sure the server's certificate is issued for {host}, or connect using one\n"
            "of the names the certificate is valid for.\n"
        )

    text += f"The server's certificate belongs to '{cn}'\n"
    if alt_names:
        text += f"The certificate's subject alternative names are: {', '.join(alt_names)}\n"
    return (
        text + "\nTO FIX THIS ERROR:\n\n"
        "The solution for this issue depends on your networking configuration. If you\n"
        f"are able to connect to this server using the hostname {cn}\n"
        f"instead of {host}, then you can resolve this issue by updating server_url\n"
        "in your configuration file.\n\n"
        f"If you are not able to connect to the server using the hostname {cn}\n"
        "you will have to update the certificate on the server to use the correct hostname.\n"
    )
