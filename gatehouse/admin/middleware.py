"""Admin localhost enforcement middleware for Gatehouse.

Ensures all /admin/* requests originate from loopback (127.0.0.1 or ::1).
The admin routes can unlock any rate-limit key and read the security event
log, and they carry no authentication of their own: loopback origin is the
security boundary. If server.host is set to 0.0.0.0 this middleware still
keeps them local.

Returns HTTP 403 for any request whose source IP is not a loopback address.
Non-admin routes are passed through unchanged.
"""

from __future__ import annotations

import os

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

_LOOPBACK_HOSTS: frozenset[str] = frozenset({"127.0.0.1", "::1", "localhost"})

_ADMIN_PREFIX = "/admin"

_FORBIDDEN_BODY: dict = {
    "error": "Admin access is restricted to localhost",
    "code": "ADMIN_FORBIDDEN",
}


def _localhost_check_enabled() -> bool:
    """Return True unless GATEHOUSE_ADMIN_LOCALHOST_ONLY=false (test environments only)."""
    return os.environ.get("GATEHOUSE_ADMIN_LOCALHOST_ONLY", "true").lower() != "false"


class AdminLocalhostMiddleware(BaseHTTPMiddleware):
    """Restrict all /admin/* requests to loopback origins."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        path = request.url.path
        if path != _ADMIN_PREFIX and not path.startswith(_ADMIN_PREFIX + "/"):
            return await call_next(request)

        if not _localhost_check_enabled():
            return await call_next(request)

        client_host = request.client.host if request.client else None
        if client_host not in _LOOPBACK_HOSTS:
            logger.warning(
                "Admin access denied: non-localhost origin",
                client_host=client_host,
                path=path,
            )
            return JSONResponse(status_code=403, content=_FORBIDDEN_BODY)

        return await call_next(request)
