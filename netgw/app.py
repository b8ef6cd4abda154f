"""ASGI application factory."""

from __future__ import annotations

import os
from pathlib import Path

from fastapi import FastAPI

from .api import admin as admin_router
from .api import status as status_router
from .log import configure_logging
from .middleware.client_ip import ClientIpMiddleware
from .runtime import GatewayRuntime
from .signals import install_signal_handlers

CONFIG_DIR_ENV = "MININETGW_CONFIG_DIR"


def resolve_config_dir(config_dir: str | os.PathLike[str] | None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return Path.cwd() / "config"


def create_app(config_dir: str | os.PathLike[str] | None = None, *, install_signals: bool = True) -> FastAPI:
    runtime = GatewayRuntime(resolve_config_dir(config_dir))

    app = FastAPI(
        title="mini-netgw",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_middleware(ClientIpMiddleware)
    app.include_router(status_router.router)
    app.include_router(admin_router.router)

    app.state.runtime = runtime

    @app.on_event("startup")
    async def on_startup() -> None:
        await runtime.initialize()
        configure_logging(runtime.config.logging)
        if install_signals:
            install_signal_handlers(
                runtime,
                runtime.config.reload.enable_sighup,
                getattr(app.state, "server", None),
            )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await runtime.shutdown()

    return app


__all__ = ["CONFIG_DIR_ENV", "create_app", "resolve_config_dir"]
