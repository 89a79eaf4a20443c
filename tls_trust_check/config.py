from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml


TLS_VERSION_NAMES = ("TLSv1", "TLSv1_1", "TLSv1_2", "TLSv1_3")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class TrustConfig:
    trusted_certs_dir: Optional[str] = None
    ca_file: Optional[str] = None
    ca_path: Optional[str] = None


@dataclass(frozen=True)
class PolicyConfig:
    minimum_version: Optional[str] = None  # one of TLS_VERSION_NAMES
    maximum_version: Optional[str] = None
    ciphers: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.minimum_version is None and self.maximum_version is None and self.ciphers is None


@dataclass(frozen=True)
class ConnectionConfig:
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    main_log: Optional[str] = None
    level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass(frozen=True)
class AppConfig:
    server_url: Optional[str] = None
    trust: TrustConfig = field(default_factory=TrustConfig)
    ssl_policy: PolicyConfig = field(default_factory=PolicyConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigError(ValueError):
    pass


_ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _env_nonempty(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _expand_env(value: str, where: str) -> str:
    def repl(match: re.Match[str]) -> str:
        var = match.group(1)
        env_val = _env_nonempty(var)
        if env_val is None:
            raise ConfigError(f"Missing environment variable {var} referenced at {where}")
        return env_val

    return _ENV_VAR_RE.sub(repl, value)


def _expand_env_in_obj(obj: Any, where: str) -> Any:
    if isinstance(obj, str):
        return _expand_env(obj, where) if "${" in obj else obj
    if isinstance(obj, list):
        return [_expand_env_in_obj(v, f"{where}[{i}]") for i, v in enumerate(obj)]
    if isinstance(obj, dict):
        return {k: _expand_env_in_obj(v, f"{where}.{k}") for k, v in obj.items()}
    return obj


def _as_str(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Expected non-empty string at {where}")
    return value


def _as_optional_str(value: Any, where: str) -> Optional[str]:
    if value is None:
        return None
    return _as_str(value, where)


def _as_optional_path(value: Any, where: str) -> Optional[str]:
    s = _as_optional_str(value, where)
    return os.path.expanduser(s) if s is not None else None


def _as_float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Expected number at {where}")
    return float(value)


def _as_mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Expected object/map at {where}")
    return value


def _as_tls_version(value: Any, where: str) -> Optional[str]:
    if value is None:
        return None
    s = _as_str(value, where)
    if s not in TLS_VERSION_NAMES:
        raise ConfigError(f"{where} must be one of: {', '.join(TLS_VERSION_NAMES)}.")
    return s


def load_config(path: Optional[str] = None) -> AppConfig:
    raw = _expand_env_in_obj(_load_raw_config(path) if path else {}, "root")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be an object/map.")

    trust_raw = _as_mapping(raw.get("trust"), "trust")
    policy_raw = _as_mapping(raw.get("ssl_policy"), "ssl_policy")
    connection_raw = _as_mapping(raw.get("connection"), "connection")
    logging_raw = _as_mapping(raw.get("logging"), "logging")

    server_url = _as_optional_str(_env_nonempty("TLS_CHECK_SERVER_URL") or raw.get("server_url"), "server_url")

    trust = TrustConfig(
        trusted_certs_dir=_as_optional_path(
            _env_nonempty("TLS_CHECK_TRUSTED_CERTS_DIR") or trust_raw.get("trusted_certs_dir"),
            "trust.trusted_certs_dir",
        ),
        ca_file=_as_optional_path(_env_nonempty("TLS_CHECK_CA_FILE") or trust_raw.get("ca_file"), "trust.ca_file"),
        ca_path=_as_optional_path(_env_nonempty("TLS_CHECK_CA_PATH") or trust_raw.get("ca_path"), "trust.ca_path"),
    )

    minimum_version = _as_tls_version(policy_raw.get("minimum_version"), "ssl_policy.minimum_version")
    maximum_version = _as_tls_version(policy_raw.get("maximum_version"), "ssl_policy.maximum_version")
    if (
        minimum_version is not None
        and maximum_version is not None
        and TLS_VERSION_NAMES.index(minimum_version) > TLS_VERSION_NAMES.index(maximum_version)
    ):
        raise ConfigError("ssl_policy.minimum_version cannot be newer than ssl_policy.maximum_version.")
    ciphers = _as_optional_str(policy_raw.get("ciphers"), "ssl_policy.ciphers")

    timeout_seconds = _as_float(connection_raw.get("timeout_seconds", 10), "connection.timeout_seconds")
    if timeout_seconds <= 0:
        raise ConfigError("connection.timeout_seconds must be >0.")

    level = _as_str(logging_raw.get("level", "INFO"), "logging.level").upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of: {', '.join(LOG_LEVELS)}.")
    file_level = _as_str(logging_raw.get("file_level", "DEBUG"), "logging.file_level").upper()
    if file_level not in LOG_LEVELS:
        raise ConfigError(f"logging.file_level must be one of: {', '.join(LOG_LEVELS)}.")

    return AppConfig(
        server_url=server_url,
        trust=trust,
        ssl_policy=PolicyConfig(
            minimum_version=minimum_version,
            maximum_version=maximum_version,
            ciphers=ciphers,
        ),
        connection=ConnectionConfig(timeout_seconds=timeout_seconds),
        logging=LoggingConfig(
            main_log=_as_optional_path(logging_raw.get("main_log"), "logging.main_log"),
            level=level,
            file_level=file_level,
        ),
    )


def _load_raw_config(path: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")
    data = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".json":
        try:
            return json.loads(data)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        return yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
