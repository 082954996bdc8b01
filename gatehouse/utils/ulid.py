"""ULID generation for Gatehouse security events.

Every audit record (SecurityEvent.event_id) and every request correlation id
(X-Gatehouse-Request-ID) is a 26-character ULID: sortable by creation time,
URL-safe, and unique without coordination.

Uses the `python-ulid` library — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        event_id = generate_ulid()
        assert len(event_id) == 26
    """
    return str(ULID())
