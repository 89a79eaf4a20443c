from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit


_DEFAULT_PORTS = {"https": 443, "http": 80}
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class InputError(ValueError):
    pass


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def parse_endpoint(uri: Optional[str]) -> Endpoint:
    """
    Derive the host/port to check from a URL or a bare ``host[:port]``.

    Bare values are treated as https. Raises InputError when no host or a valid port can be derived.
    """
    if uri is None or not uri.strip():
        raise InputError("No URL given and no server_url configured")
    raw = uri.strip()
    candidate = raw if _SCHEME_RE.match(raw) else f"https://{raw}"

    try:
        parts = urlsplit(candidate)
        host = parts.hostname
        port = parts.port
    except ValueError as exc:
        raise InputError(f"Given URI: `{raw}' is invalid: {exc}") from exc

    if not host:
        raise InputError(f"Given URI: `{raw}' is invalid: no host")
    # Certificates carry A-labels (xn--...), so internationalized names are compared in that form.
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise InputError(f"Given URI: `{raw}' is invalid: bad hostname {host!r}: {exc}") from exc
    if port is None:
        port = _DEFAULT_PORTS.get(parts.scheme.lower())
        if port is None:
            raise InputError(f"Given URI: `{raw}' is invalid: no port for scheme {parts.scheme!r}")
    if not 0 < port < 65536:
        raise InputError(f"Given URI: `{raw}' is invalid: port {port} out of range")
    return Endpoint(host=host, port=port)
