"""Signal handling utilities."""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Optional

from .runtime import GatewayRuntime

log = logging.getLogger(__name__)

def install_signal_handlers(runtime: GatewayRuntime, enable_reload: bool, server: Optional[Any] = None) -> None:
    """Install SIGTERM (shutdown) and optionally SIGHUP (reload) handlers.

    SIGTERM is only taken over when a uvicorn ``server`` is known; the
    handler flags it to exit so its regular shutdown path (including the
    application's shutdown hooks) runs. Without a server the signal is left
    to whoever owns the process.
    """
    loop = asyncio.get_running_loop()

    if server is not None:
        def _sigterm_handler():
            log.info("SIGTERM received; shutting down gateway")
            server.should_exit = True

        try:
            loop.add_signal_handler(signal.SIGTERM, _sigterm_handler)
        except NotImplementedError:  # pragma: no cover - Windows
            log.warning("SIGTERM handler not supported on this platform")

    if not enable_reload:
        return

    def _sighup_handler():
        log.info("SIGHUP received; reloading configuration")
        asyncio.create_task(runtime.reload())

    try:
        loop.add_signal_handler(signal.SIGHUP, _sighup_handler)
    except (AttributeError, NotImplementedError):  # pragma: no cover
        log.warning("SIGHUP reload not supported on this platform")

__all__ = ["install_signal_handlers"]
