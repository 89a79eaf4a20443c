from __future__ import annotations

import enum
import logging
import socket
import ssl
from typing import Callable, Optional

from cryptography import x509

from tls_trust_check.config import ConfigError
from tls_trust_check.endpoint import Endpoint
from tls_trust_check.policy import SSLPolicy


log = logging.getLogger(__name__)


class TransportError(OSError):
    """The endpoint could not be reached; nothing can be verified without a transport."""


class VerifyMode(enum.Enum):
    VERIFY_PEER = "verify_peer"
    VERIFY_NONE = "verify_none"


def build_ssl_context(policy: SSLPolicy, mode: VerifyMode) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        policy.apply(context)
    except (ssl.SSLError, OSError) as exc:
        raise ConfigError(f"Could not apply SSL policy: {exc}") from exc
    # Hostname matching is its own stage, run after the chain has been verified.
    context.check_hostname = False
    if mode is VerifyMode.VERIFY_PEER:
        context.verify_mode = ssl.CERT_REQUIRED
    else:
        context.verify_mode = ssl.CERT_NONE
    return context


class TLSSession:
    """A TCP connection wrapped for TLS whose handshake has not been performed yet."""

    def __init__(self, endpoint: Endpoint, mode: VerifyMode, sock: ssl.SSLSocket):
        self.endpoint = endpoint
        self.mode = mode
        self._sock = sock
        self._handshaken = False

    @property
    def handshaken(self) -> bool:
        return self._handshaken

    def handshake(self) -> None:
        """
        Perform the TLS handshake once.

        ``ssl.SSLError`` (including certificate verification failures) propagates to the caller;
        other socket errors and timeouts are transport failures.
        """
        if self._handshaken:
            return
        try:
            self._sock.do_handshake()
        except ssl.SSLError:
            raise
        except OSError as exc:
            raise TransportError(f"TLS handshake with {self.endpoint} failed: {exc}") from exc
        self._handshaken = True

    def peer_certificate(self) -> Optional[x509.Certificate]:
        der = self._sock.getpeercert(binary_form=True) if self._handshaken else None
        if not der:
            return None
        return x509.load_der_x509_certificate(der)

    def protocol_version(self) -> Optional[str]:
        return self._sock.version() if self._handshaken else None

    def cipher_name(self) -> Optional[str]:
        cipher = self._sock.cipher() if self._handshaken else None
        return cipher[0] if cipher else None

    def close(self) -> None:
        self._sock.close()


def open_session(endpoint: Endpoint, mode: VerifyMode, policy: SSLPolicy, *, timeout: Optional[float] = None) -> TLSSession:
    context = build_ssl_context(policy, mode)
    log.debug("Opening TCP connection to %s mode=%s timeout=%s", endpoint, mode.value, timeout)
    try:
        raw = socket.create_connection((endpoint.host, endpoint.port), timeout=timeout)
    except OSError as exc:
        raise TransportError(f"Could not connect to {endpoint}: {exc}") from exc
    try:
        sock = context.wrap_socket(raw, server_hostname=endpoint.host, do_handshake_on_connect=False)
    except Exception:
        raw.close()
        raise
    return TLSSession(endpoint, mode, sock)


SessionOpener = Callable[[Endpoint, VerifyMode], TLSSession]


class SessionCache:
    """
    At most one session per (endpoint, mode) for a run, opened on first use.

    The verifying and the non-verifying sessions are deliberately separate connections: a
    session whose verification failed exposes no peer certificate, so diagnosis replays the
    connection without verification. Use as a context manager so every socket is released.
    """

    def __init__(self, opener: SessionOpener):
        self._opener = opener
        self._sessions: dict[tuple[Endpoint, VerifyMode], TLSSession] = {}

    @classmethod
    def for_policy(cls, policy: SSLPolicy, *, timeout: Optional[float] = None) -> "SessionCache":
        return cls(lambda endpoint, mode: open_session(endpoint, mode, policy, timeout=timeout))

    def get(self, endpoint: Endpoint, mode: VerifyMode) -> TLSSession:
        key = (endpoint, mode)
        session = self._sessions.get(key)
        if session is None:
            session = self._opener(endpoint, mode)
            self._sessions[key] = session
        return session

    def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            try:
                session.close()
            except OSError as exc:
                log.debug("Error closing session to %s: %s", session.endpoint, exc)

    def __enter__(self) -> "SessionCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
