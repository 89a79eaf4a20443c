import json
import logging
import os
import socket
import ssl
import tempfile
import threading
import unittest

from cert_factory import cert_pem, key_pem, make_cert, write_pem
from tls_trust_check.__main__ import EXIT_ERROR, EXIT_OK, EXIT_VERIFY_FAILED, main
from tls_trust_check.config import TrustConfig
from tls_trust_check.connection import SessionCache, TransportError, VerifyMode
from tls_trust_check.endpoint import Endpoint
from tls_trust_check.hostname import common_name
from tls_trust_check.policy import DefaultSSLPolicy
from tls_trust_check.verification import STAGE_HOSTNAME, STAGE_PEER, run_ssl_check


class LoopbackTLSServer:
    """Serves one certificate on 127.0.0.1, completing handshakes until stopped."""

    def __init__(self, cert_file: str, key_file: str):
        self._context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self._context.load_cert_chain(cert_file, key_file)
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(0.2)
        self.port = self._listener.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def __enter__(self) -> "LoopbackTLSServer":
        self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stop.set()
        self._thread.join(timeout=5)
        self._listener.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            conn.settimeout(5)
            try:
                with self._context.wrap_socket(conn, server_side=True):
                    pass
            except OSError:
                # Clients that reject the certificate abort the handshake.
                conn.close()


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class EndToEndTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.trust_dir = os.path.join(self._tmp.name, "trusted_certs")
        os.mkdir(self.trust_dir)
        self.logger = logging.getLogger("end-to-end-tests")
        self._saved_env = os.environ.copy()
        for name in ("TLS_CHECK_SERVER_URL", "TLS_CHECK_TRUSTED_CERTS_DIR", "TLS_CHECK_CA_FILE", "TLS_CHECK_CA_PATH"):
            os.environ.pop(name, None)

    def tearDown(self) -> None:
        os.environ.clear()
        os.environ.update(self._saved_env)
        logging.getLogger("tls_trust_check").handlers.clear()
        self._tmp.cleanup()

    def _server(self, common: str, *, dns_names=(), ip_addresses=(), trusted: bool):
        cert, key = make_cert(common, dns_names=dns_names, ip_addresses=ip_addresses, organization="Loopback Test")
        cert_file = write_pem(os.path.join(self._tmp.name, "server.crt"), cert_pem(cert))
        key_file = write_pem(os.path.join(self._tmp.name, "server.key"), key_pem(key))
        if trusted:
            write_pem(os.path.join(self.trust_dir, "server.crt"), cert_pem(cert))
        return cert, LoopbackTLSServer(cert_file, key_file)

    def _check(self, host: str, port: int):
        trust = TrustConfig(trusted_certs_dir=self.trust_dir)
        with SessionCache.for_policy(DefaultSSLPolicy(trust=trust), timeout=5) as sessions:
            return run_ssl_check(endpoint=Endpoint(host, port), trust=trust, sessions=sessions, logger=self.logger)

    def test_untrusted_self_signed_certificate(self) -> None:
        cert, server = self._server("untrusted.example.com", dns_names=["localhost"], trusted=False)
        with server:
            result = self._check("localhost", server.port)

        self.assertFalse(result.success)
        peer = result.stage(STAGE_PEER)
        self.assertEqual(peer.status, "failed")
        self.assertIn(f"Certificate issuer data: {cert.issuer.rfc4514_string()}", peer.diagnostic)
        self.assertIn("trusted_certs_dir", peer.diagnostic)
        self.assertEqual(result.stage(STAGE_HOSTNAME).status, "skipped")

    def test_trusted_certificate_for_other_host(self) -> None:
        cert, server = self._server("other.example.com", dns_names=["other.example.com"], trusted=True)
        with server:
            result = self._check("localhost", server.port)

        self.assertFalse(result.success)
        self.assertEqual(result.stage(STAGE_PEER).status, "passed")
        hostname = result.stage(STAGE_HOSTNAME)
        self.assertEqual(hostname.status, "failed")
        self.assertEqual(common_name(cert), "other.example.com")
        self.assertIn("You are attempting to connect to:   'localhost'", hostname.diagnostic)
        self.assertIn("The server's certificate belongs to 'other.example.com'", hostname.diagnostic)

    def test_trusted_certificate_for_this_host(self) -> None:
        _, server = self._server("localhost", dns_names=["localhost"], ip_addresses=["127.0.0.1"], trusted=True)
        with server:
            result = self._check("127.0.0.1", server.port)

        self.assertTrue(result.success)
        self.assertEqual(result.diagnostics, [])

    def test_der_encoded_trusted_cert_is_used_as_anchor(self) -> None:
        from cryptography.hazmat.primitives import serialization

        cert, server = self._server("localhost", ip_addresses=["127.0.0.1"], trusted=False)
        write_pem(os.path.join(self.trust_dir, "server.crt"), cert.public_bytes(serialization.Encoding.DER))
        with server:
            result = self._check("127.0.0.1", server.port)

        self.assertEqual(result.bad_certificates, [])
        self.assertEqual(result.stage(STAGE_PEER).status, "passed")
        self.assertTrue(result.success)

    def test_broken_trusted_cert_does_not_fail_a_valid_chain(self) -> None:
        _, server = self._server("localhost", ip_addresses=["127.0.0.1"], trusted=True)
        write_pem(os.path.join(self.trust_dir, "broken.pem"), b"-----BEGIN CERTIFICATE-----\nMIIB")
        with server:
            result = self._check("127.0.0.1", server.port)

        self.assertTrue(result.success)
        self.assertEqual([os.path.basename(r.path) for r in result.bad_certificates], ["broken.pem"])

    def test_non_verifying_session_completes_handshake_for_untrusted_cert(self) -> None:
        cert, server = self._server("untrusted.example.com", trusted=False)
        trust = TrustConfig(trusted_certs_dir=self.trust_dir)
        with server, SessionCache.for_policy(DefaultSSLPolicy(trust=trust), timeout=5) as sessions:
            endpoint = Endpoint("127.0.0.1", server.port)
            with self.assertRaises(ssl.SSLError):
                sessions.get(endpoint, VerifyMode.VERIFY_PEER).handshake()
            session = sessions.get(endpoint, VerifyMode.VERIFY_NONE)
            session.handshake()
            self.assertEqual(session.peer_certificate(), cert)

    def test_connection_refused_is_a_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            self._check("127.0.0.1", _unused_port())

    def test_cli_exit_codes_and_json_report(self) -> None:
        report_path = os.path.join(self._tmp.name, "report.json")
        _, server = self._server("other.example.com", trusted=True)
        with server:
            code = main([
                f"https://localhost:{server.port}",
                "--trusted-certs-dir",
                self.trust_dir,
                "--timeout",
                "5",
                "--json-report",
                report_path,
            ])
        self.assertEqual(code, EXIT_VERIFY_FAILED)
        with open(report_path, encoding="utf-8") as f:
            record = json.load(f)
        self.assertFalse(record["success"])
        self.assertEqual([s["status"] for s in record["stages"]], ["passed", "passed", "failed"])

    def test_cli_success(self) -> None:
        _, server = self._server("localhost", ip_addresses=["127.0.0.1"], trusted=True)
        with server:
            code = main([f"127.0.0.1:{server.port}", "--trusted-certs-dir", self.trust_dir, "--timeout", "5"])
        self.assertEqual(code, EXIT_OK)

    def test_cli_unreachable_host(self) -> None:
        code = main([f"https://127.0.0.1:{_unused_port()}", "--timeout", "2"])
        self.assertEqual(code, EXIT_ERROR)

    def test_cli_invalid_uri(self) -> None:
        self.assertEqual(main(["https://:443"]), EXIT_ERROR)


if __name__ == "__main__":
    unittest.main()
