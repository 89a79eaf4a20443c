from __future__ import annotations

import glob
import os
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from OpenSSL import crypto


CERTIFICATE_EXTENSIONS = ("crt", "pem")


@dataclass(frozen=True)
class CertificateCheckResult:
    path: str
    error: Optional[str] = None  # None when the certificate parses and verifies against itself

    @property
    def ok(self) -> bool:
        return self.error is None


def trusted_certificate_paths(trust_dir: Optional[str]) -> list[str]:
    """Certificate files directly under ``trust_dir``; empty when it is unset or missing."""
    if not trust_dir or not os.path.isdir(trust_dir):
        return []
    paths: list[str] = []
    for ext in CERTIFICATE_EXTENSIONS:
        paths.extend(glob.glob(os.path.join(glob.escape(trust_dir), f"*.{ext}")))
    return sorted(p for p in paths if os.path.isfile(p))


def load_certificate(data: bytes) -> x509.Certificate:
    if b"-----BEGIN" in data:
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def check_certificate_file(path: str) -> CertificateCheckResult:
    """
    Parse one trusted certificate and verify it against a store holding only itself.

    This catches files the TLS library would silently ignore (truncated PEM, expired or
    otherwise self-inconsistent certificates) without depending on any other chain member.
    """
    abs_path = os.path.abspath(os.path.expanduser(path))
    try:
        with open(abs_path, "rb") as f:
            data = f.read()
    except OSError as exc:
        return CertificateCheckResult(path=abs_path, error=f"could not read file: {exc}")

    try:
        cert = load_certificate(data)
    except ValueError as exc:
        return CertificateCheckResult(path=abs_path, error=f"could not parse certificate: {exc}")

    try:
        openssl_cert = crypto.X509.from_cryptography(cert)
        store = crypto.X509Store()
        store.add_cert(openssl_cert)
        crypto.X509StoreContext(store, openssl_cert).verify_certificate()
    except crypto.X509StoreContextError as exc:
        return CertificateCheckResult(path=abs_path, error=str(exc))
    except crypto.Error as exc:
        return CertificateCheckResult(path=abs_path, error=f"certificate store rejected certificate: {exc}")
    return CertificateCheckResult(path=abs_path)


def scan_trusted_certs(trust_dir: Optional[str]) -> list[CertificateCheckResult]:
    return [check_certificate_file(p) for p in trusted_certificate_paths(trust_dir)]
