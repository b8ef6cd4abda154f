from __future__ import annotations

import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger(__name__)

class ClientIpMiddleware(BaseHTTPMiddleware):
    """Stores the effective client address on ``request.state.client_ip``.

    Forwarding headers only count when the direct peer is a configured
    trusted proxy. Requests are never rejected here.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        remote = request.client.host if request.client else None
        runtime = getattr(request.app.state, "runtime", None)
        if runtime is None:
            request.state.client_ip = remote
            return await call_next(request)

        client_ip = runtime.client_ip(
            remote,
            request.headers.get("x-forwarded-for"),
            request.headers.get("x-real-ip"),
        )
        if client_ip != remote:
            log.debug("Resolved client %s via proxy %s", client_ip, remote)
        request.state.client_ip = client_ip
        return await call_next(request)


__all__ = ["ClientIpMiddleware"]
