"""Wall-clock helpers.

All gate timestamps (token issuedAt, RateLimitRecord.last_attempt_at,
lockout_until) are integer milliseconds since the Unix epoch. Components take
an optional ``clock`` callable with this signature so tests can pin time.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in integer epoch milliseconds."""
    return int(time.time() * 1000)
