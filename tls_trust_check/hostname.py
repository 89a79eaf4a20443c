from __future__ import annotations

import ipaddress
from typing import Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def common_name(cert: x509.Certificate) -> Optional[str]:
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return None
    value = attrs[0].value
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else value


def _subject_alt_names(cert: x509.Certificate) -> Optional[x509.SubjectAlternativeName]:
    try:
        return cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return None


def subject_alt_dns_names(cert: x509.Certificate) -> list[str]:
    san = _subject_alt_names(cert)
    return san.get_values_for_type(x509.DNSName) if san is not None else []


def subject_alt_ip_addresses(cert: x509.Certificate) -> list[IPAddress]:
    san = _subject_alt_names(cert)
    return san.get_values_for_type(x509.IPAddress) if san is not None else []


def _parse_ip(host: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def dns_name_matches(pattern: str, host: str) -> bool:
    """RFC 6125 matching: case-insensitive, wildcard only as the whole left-most label."""
    pattern = pattern.rstrip(".").lower()
    host = host.rstrip(".").lower()
    if not pattern or not host:
        return False
    if "*" not in pattern:
        return pattern == host

    p_labels = pattern.split(".")
    h_labels = host.split(".")
    # "*.com" style patterns and wildcards anywhere but the first label are rejected.
    if p_labels[0] != "*" or "*" in ".".join(p_labels[1:]) or len(p_labels) < 3:
        return False
    if len(p_labels) != len(h_labels):
        return False
    return p_labels[1:] == h_labels[1:] and bool(h_labels[0])


def certificate_matches_host(cert: x509.Certificate, host: str) -> bool:
    ip = _parse_ip(host)
    if ip is not None:
        return ip in subject_alt_ip_addresses(cert)

    dns_names = subject_alt_dns_names(cert)
    if dns_names:
        return any(dns_name_matches(name, host) for name in dns_names)
    cn = common_name(cert)
    return cn is not None and dns_name_matches(cn, host)
