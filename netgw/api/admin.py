"""
    Admin endpoints.

    Those endpoints are exposed only to loopback callers unless the admin
    allowlist names further hosts or networks. They allow termination of the
    daemon as well as reloading of the configuration (as SIGTERM and SIGHUP).
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..runtime import GatewayRuntime

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


async def get_runtime(request: Request) -> GatewayRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.is_ready:
        raise HTTPException(status_code=503, detail="Gateway not ready")
    return runtime


def _require_admin_access(request: Request, runtime: GatewayRuntime) -> None:
    client_ip = getattr(request.state, "client_ip", None)
    if not runtime.is_admin_allowed(client_ip):
        log.warning("Rejected admin request from %s", client_ip)
        raise HTTPException(status_code=403, detail="Forbidden")


@router.post("/reload")
async def admin_reload(request: Request, runtime: GatewayRuntime = Depends(get_runtime)):
    """
        Re-reads the configuration file. This is equal to SIGHUP.
    """
    _require_admin_access(request, runtime)
    await runtime.reload()
    return JSONResponse({"status": "reloaded"})


@router.post("/shutdown")
async def admin_shutdown(request: Request, runtime: GatewayRuntime = Depends(get_runtime)):
    """
        Terminate our server like SIGTERM
    """
    _require_admin_access(request, runtime)
    server = getattr(request.app.state, "server", None)
    if server is None:
        raise HTTPException(status_code=503, detail="Shutdown controller unavailable")
    server.should_exit = True
    return JSONResponse({"status": "shutting_down"})


__all__ = ["router"]
