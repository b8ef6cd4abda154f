"""Configuration loading and validation for mini-netgw."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, List, Mapping, MutableMapping, Optional

from .net import is_valid_cidr

log = logging.getLogger(__name__)

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 8080


class ConfigError(RuntimeError):
    """Configuration error exception

    This exception is raised whenever the configuration
    file is invalid
    """

@dataclass(slots=True)
class ListenConfig:
    """Listener configuration.

    With ``dual_stack_loopback`` enabled, a listener configured for IPv4
    loopback additionally binds ``::1`` when the host supports it."""

    host: str = DEFAULT_LISTEN_HOST
    port: int = DEFAULT_LISTEN_PORT
    dual_stack_loopback: bool = True


@dataclass(slots=True)
class AutoApproveConfig:
    """Auto-approve trust path

    ``allowlist`` of None (or empty) means only loopback callers are
    trusted. ``trusted_proxies`` lists peers whose forwarding headers
    are believed when resolving the client address."""

    allowlist: Optional[List[str]] = None
    trusted_proxies: List[str] = field(default_factory=list)


@dataclass(slots=True)
class AdminConfig:
    """Administration interface configuration

    The admin endpoints allow shutdown and configuration reload the
    same way signals do. Access is limited to loopback callers unless
    ``allowlist`` names additional hosts or networks."""

    allowlist: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LoggingConfig:
    """Logging configuration

    ``decision_level`` overrides the level of the bind probe and
    approval decision loggers; it defaults to ``level``."""

    level: str = "INFO"
    access_log: bool = True
    file: Optional[str] = None
    decision_level: Optional[str] = None


@dataclass(slots=True)
class ReloadConfig:
    """SIGHUP handler

    If enabled the SIGHUP handler triggers reloading of the
    configuration file"""

    enable_sighup: bool = True


@dataclass(slots=True)
class GatewayConfig:
    listen: ListenConfig = field(default_factory=ListenConfig)
    auto_approve: AutoApproveConfig = field(default_factory=AutoApproveConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reload: ReloadConfig = field(default_factory=ReloadConfig)


def _expect(obj: MutableMapping[str, Any], key: str, ctx: str) -> Any:
    if key not in obj:
        raise ConfigError(f"Missing field '{key}' in {ctx}")
    return obj[key]


def _load_list(value: Any, ctx: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"Expected list for {ctx}")
    return value


def _load_mapping(value: Any, ctx: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected mapping for {ctx}")
    return value


def _load_address_list(value: Any, ctx: str) -> List[str]:
    entries: List[str] = []
    for item in _load_list(value, ctx):
        if not isinstance(item, str):
            raise ConfigError(f"Expected string entries in {ctx}")
        entry = item.strip()
        if not entry:
            continue
        if "/" in entry and not is_valid_cidr(entry):
            # Kept as-is: an unparsable CIDR simply never matches
            log.warning("Entry %r in %s is not a valid IPv4 CIDR and will never match", entry, ctx)
        entries.append(entry)
    return entries


def _load_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid listen.port: {value!r}") from exc
    if not 0 <= port <= 65535:
        raise ConfigError(f"listen.port out of range: {port}")
    return port


def load_gateway_config(path: Path) -> GatewayConfig:
    data = _load_json(path)
    if not isinstance(data, Mapping):
        raise ConfigError("gateway.json must contain an object")

    listen_raw = _load_mapping(_expect(dict(data), "listen", "gateway"), "listen")
    auto_raw = _load_mapping(data.get("auto_approve"), "auto_approve")
    admin_raw = _load_mapping(data.get("admin"), "admin")
    logging_raw = _load_mapping(data.get("logging"), "logging")
    reload_raw = _load_mapping(data.get("reload"), "reload")

    listen = ListenConfig(
        host=str(listen_raw.get("host") or DEFAULT_LISTEN_HOST),
        port=_load_port(listen_raw.get("port", DEFAULT_LISTEN_PORT)),
        dual_stack_loopback=bool(listen_raw.get("dual_stack_loopback", True)),
    )

    allowlist_value = auto_raw.get("allowlist")
    auto_approve = AutoApproveConfig(
        allowlist=(
            _load_address_list(allowlist_value, "auto_approve.allowlist")
            if allowlist_value is not None
            else None
        ),
        trusted_proxies=_load_address_list(auto_raw.get("trusted_proxies"), "auto_approve.trusted_proxies"),
    )

    admin = AdminConfig(allowlist=_load_address_list(admin_raw.get("allowlist"), "admin.allowlist"))

    logging_cfg = LoggingConfig(
        level=str(logging_raw.get("level", "INFO")),
        access_log=bool(logging_raw.get("access_log", True)),
        file=(
            str(logging_raw.get("file"))
            if logging_raw.get("file") is not None
            else None
        ),
        decision_level=(
            str(logging_raw.get("decision_level"))
            if logging_raw.get("decision_level") is not None
            else None
        ),
    )

    reload_cfg = ReloadConfig(enable_sighup=bool(reload_raw.get("enable_sighup", True)))

    return GatewayConfig(
        listen=listen,
        auto_approve=auto_approve,
        admin=admin,
        logging=logging_cfg,
        reload=reload_cfg,
    )


def _load_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file missing: {path}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc


class ConfigManager:
    """Thread-safe holder for the active gateway configuration."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = RLock()
        self._config: Optional[GatewayConfig] = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> GatewayConfig:
        """Load the configuration file and swap the active configuration."""
        with self._lock:
            log.debug("Loading configuration from %s", self._path)
            self._config = load_gateway_config(self._path)
            return self._config

    def current(self) -> GatewayConfig:
        with self._lock:
            if self._config is None:
                raise ConfigError("Configuration has not been loaded yet")
            return self._config


__all__ = [
    "AdminConfig",
    "AutoApproveConfig",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_LISTEN_HOST",
    "DEFAULT_LISTEN_PORT",
    "GatewayConfig",
    "ListenConfig",
    "LoggingConfig",
    "ReloadConfig",
    "load_gateway_config",
]
