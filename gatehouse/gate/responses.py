"""Gate rejection responses.

Gates run as FastAPI dependencies, so they short-circuit a request by raising
GateRejection. install_gate_handlers() registers the handler that renders it:

  CSRF (403):
      {"error": "CSRF token required",            "code": "CSRF_TOKEN_MISSING"}
      {"error": "Invalid or expired CSRF token",  "code": "CSRF_TOKEN_INVALID"}

  Lockout (429, plus Retry-After: <seconds>):
      {"error": "Account temporarily locked. Try again in N minute(s).",
       "code": "ACCOUNT_LOCKED",
       "retryAfter": <seconds>}

retryAfter is in whole seconds, rounded up, and never 0 while locked.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gatehouse.constants import (
    CODE_ACCOUNT_LOCKED,
    CODE_CSRF_TOKEN_INVALID,
    CODE_CSRF_TOKEN_MISSING,
    CSRF_REJECTION_STATUS,
    LOCKOUT_STATUS,
    MINUTE_MS,
    SECOND_MS,
)

_CSRF_MESSAGES: dict[str, str] = {
    CODE_CSRF_TOKEN_MISSING: "CSRF token required",
    CODE_CSRF_TOKEN_INVALID: "Invalid or expired CSRF token",
}


class GateRejection(Exception):
    """Raised by a gate to stop the request before the route handler runs."""

    def __init__(
        self,
        status_code: int,
        body: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(body.get("code", "GATE_REJECTED"))
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}

    @property
    def code(self) -> str:
        return self.body.get("code", "")

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body, headers=self.headers)


def build_csrf_rejection(code: str) -> GateRejection:
    """403 for a missing or invalid CSRF token."""
    if code not in _CSRF_MESSAGES:
        raise ValueError(f"Unknown CSRF rejection code: {code}")
    return GateRejection(
        status_code=CSRF_REJECTION_STATUS,
        body={"error": _CSRF_MESSAGES[code], "code": code},
    )


def build_lockout_rejection(retry_after_ms: int) -> GateRejection:
    """429 for a locked key.

    The message rounds the remaining lockout up to whole minutes; retryAfter
    and the Retry-After header round it up to whole seconds.
    """
    remaining_ms = max(retry_after_ms, 1)
    minutes = math.ceil(remaining_ms / MINUTE_MS)
    seconds = math.ceil(remaining_ms / SECOND_MS)
    return GateRejection(
        status_code=LOCKOUT_STATUS,
        body={
            "error": f"Account temporarily locked. Try again in {minutes} minute(s).",
            "code": CODE_ACCOUNT_LOCKED,
            "retryAfter": seconds,
        },
        headers={"Retry-After": str(seconds)},
    )


async def _gate_rejection_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, GateRejection)
    return exc.to_response()


def install_gate_handlers(app: FastAPI) -> None:
    """Register the GateRejection → JSONResponse handler on an application."""
    app.add_exception_handler(GateRejection, _gate_rejection_handler)
