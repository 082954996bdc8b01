"""Shared slowapi limiter for the token issuance endpoint.

GET /auth/csrf-token is cheap but unauthenticated; slowapi caps it per client
address so it cannot be used to hammer the process. This is independent of
the progressive-delay engine, which guards credential-bearing endpoints.

The Limiter instance is shared between:
  - gatehouse/main.py  (route decorator, app.state.limiter + SlowAPIMiddleware)
  - tests/conftest.py  (storage reset between tests)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from gatehouse.constants import TOKEN_ISSUANCE_RATE_LIMIT

limiter = Limiter(key_func=get_remote_address)

__all__ = ["TOKEN_ISSUANCE_RATE_LIMIT", "limiter"]
