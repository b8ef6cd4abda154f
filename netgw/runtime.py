"""Runtime wiring for the gateway."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .config import ConfigError, ConfigManager, GatewayConfig
from .net import is_ip_in_auto_approve_allowlist, resolve_client_ip

log = logging.getLogger(__name__)

CONFIG_FILENAME = "gateway.json"


class GatewayRuntime:
    def __init__(self, config_dir: Path):
        self._config_dir = config_dir
        self._config_manager = ConfigManager(config_dir / CONFIG_FILENAME)
        self._config: Optional[GatewayConfig] = None
        self._listen_hosts: List[str] = []
        self._lock = asyncio.Lock()

    @property
    def config(self) -> GatewayConfig:
        if self._config is None:
            raise ConfigError("Configuration not loaded")
        return self._config

    @property
    def is_ready(self) -> bool:
        return self._config is not None

    @property
    def listen_hosts(self) -> List[str]:
        return list(self._listen_hosts)

    def set_listen_hosts(self, hosts: List[str]) -> None:
        self._listen_hosts = list(hosts)

    async def initialize(self) -> None:
        async with self._lock:
            self._config = self._config_manager.load()
            log.info(
                "Gateway runtime initialized (auto-approve entries: %d, trusted proxies: %d)",
                len(self._config.auto_approve.allowlist or []),
                len(self._config.auto_approve.trusted_proxies),
            )

    async def reload(self) -> None:
        async with self._lock:
            log.info("Configuration reload requested")
            self._config = self._config_manager.load()

    async def shutdown(self) -> None:
        async with self._lock:
            self._config = None

    def client_ip(
        self,
        remote_addr: Optional[str],
        forwarded_for: Optional[str] = None,
        real_ip: Optional[str] = None,
    ) -> Optional[str]:
        trusted = self._config.auto_approve.trusted_proxies if self._config is not None else []
        return resolve_client_ip(remote_addr, forwarded_for, real_ip, trusted)

    def is_auto_approved(self, ip: Optional[str]) -> bool:
        if self._config is None:
            return False
        approved = is_ip_in_auto_approve_allowlist(ip, self._config.auto_approve.allowlist)
        log.debug("Auto-approve decision for %s: %s", ip, approved)
        return approved

    def is_admin_allowed(self, ip: Optional[str]) -> bool:
        if self._config is None:
            return False
        return is_ip_in_auto_approve_allowlist(ip, self._config.admin.allowlist)


__all__ = ["CONFIG_FILENAME", "GatewayRuntime"]
