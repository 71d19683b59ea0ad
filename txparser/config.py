"""Shared configuration loader for txparser."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".txparser.yaml"
DEFAULT_RPC_URL = "https://ethereum-rpc.publicnode.com"
DEFAULT_RPC_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_BACKWARD_SCAN_DEPTH = 10000
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080


@dataclass
class RPCConfig:
    """Connection details for the ledger's JSON-RPC endpoint."""

    url: str = DEFAULT_RPC_URL
    timeout: float = DEFAULT_RPC_TIMEOUT


@dataclass
class ScannerConfig:
    """Tuning knobs for :class:`~txparser.scanner.BlockScanner`.

    ``backward_scan_depth`` values that are not positive fall back to
    :data:`DEFAULT_BACKWARD_SCAN_DEPTH` instead of disabling the backfill.
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL
    backward_scan_enabled: bool = True
    backward_scan_depth: int = DEFAULT_BACKWARD_SCAN_DEPTH

    def __post_init__(self) -> None:
        if self.backward_scan_depth is None or self.backward_scan_depth <= 0:
            self.backward_scan_depth = DEFAULT_BACKWARD_SCAN_DEPTH


@dataclass
class ServerConfig:
    host: str = DEFAULT_HTTP_HOST
    port: int = DEFAULT_HTTP_PORT


@dataclass
class AppConfig:
    rpc: RPCConfig = field(default_factory=RPCConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_port(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port in {source}: {raw}") from exc
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port out of range in {source}: {raw}")
    return port


def _coerce_seconds(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid duration in {source}: {raw}") from exc
    if seconds <= 0:
        raise ConfigurationError(f"Duration must be positive in {source}: {raw}")
    return seconds


def _coerce_depth(raw: Any) -> int | None:
    # Unparsable or non-positive depths fall back to the default rather than failing.
    if raw is None:
        return None
    try:
        depth = int(raw)
    except (TypeError, ValueError):
        return None
    return depth if depth > 0 else None


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _validate_endpoint(raw: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    return raw


def load_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load configuration from overrides, environment variables and optional YAML.

    Precedence is ``overrides`` > environment > YAML file > built-in defaults.
    Override keys are flat: ``rpc_url``, ``rpc_timeout``, ``poll_interval``,
    ``backward_scan_enabled``, ``backward_scan_depth``, ``host`` and ``port``.
    """

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    scanner_section = _section(file_config, "scanner", path)
    server_section = _section(file_config, "server", path)

    override_map = {key: value for key, value in (overrides or {}).items() if value is not None}

    rpc_url = _first_value(
        override_map.get("rpc_url"),
        env_map.get("TXPARSER_RPC_URL"),
        rpc_section.get("url"),
        DEFAULT_RPC_URL,
    )
    rpc_timeout = _first_value(
        _coerce_seconds(override_map.get("rpc_timeout"), source="overrides"),
        _coerce_seconds(env_map.get("TXPARSER_RPC_TIMEOUT"), source="environment"),
        _coerce_seconds(rpc_section.get("timeout"), source=f"{path} rpc.timeout"),
        DEFAULT_RPC_TIMEOUT,
    )

    poll_interval = _first_value(
        _coerce_seconds(override_map.get("poll_interval"), source="overrides"),
        _coerce_seconds(env_map.get("TXPARSER_POLL_INTERVAL"), source="environment"),
        _coerce_seconds(scanner_section.get("poll_interval"), source=f"{path} scanner.poll_interval"),
        DEFAULT_POLL_INTERVAL,
    )
    backward_enabled = _first_value(
        _coerce_bool(override_map.get("backward_scan_enabled")),
        _coerce_bool(env_map.get("BACKWARD_SCAN_ENABLED")),
        _coerce_bool(scanner_section.get("backward_scan_enabled")),
        True,
    )
    backward_depth = _first_value(
        _coerce_depth(override_map.get("backward_scan_depth")),
        _coerce_depth(env_map.get("BACKWARD_SCAN_DEPTH")),
        _coerce_depth(scanner_section.get("backward_scan_depth")),
        DEFAULT_BACKWARD_SCAN_DEPTH,
    )

    host = _first_value(
        override_map.get("host"),
        env_map.get("TXPARSER_HTTP_HOST"),
        server_section.get("host"),
        DEFAULT_HTTP_HOST,
    )
    port = _first_value(
        _coerce_port(override_map.get("port"), source="overrides"),
        _coerce_port(env_map.get("TXPARSER_HTTP_PORT"), source="environment"),
        _coerce_port(server_section.get("port"), source=f"{path} server.port"),
        DEFAULT_HTTP_PORT,
    )

    return AppConfig(
        rpc=RPCConfig(url=_validate_endpoint(str(rpc_url)), timeout=rpc_timeout),
        scanner=ScannerConfig(
            poll_interval=poll_interval,
            backward_scan_enabled=bool(backward_enabled),
            backward_scan_depth=backward_depth,
        ),
        server=ServerConfig(host=str(host), port=port),
    )
