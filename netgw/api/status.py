"""Status endpoints reporting the listener's network decisions."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..runtime import GatewayRuntime
from .admin import get_runtime

router = APIRouter(prefix="/status")


@router.get("/approval")
async def approval(request: Request, runtime: GatewayRuntime = Depends(get_runtime)):
    """Report whether the calling address would be auto-approved."""
    client_ip = getattr(request.state, "client_ip", None)
    return JSONResponse({"client": client_ip, "auto_approve": runtime.is_auto_approved(client_ip)})


@router.get("/listen")
async def listen(runtime: GatewayRuntime = Depends(get_runtime)):
    return JSONResponse({"hosts": runtime.listen_hosts, "port": runtime.config.listen.port})


__all__ = ["router"]
