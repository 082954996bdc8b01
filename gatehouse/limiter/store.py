"""In-memory rate limit store.

Holds ``key → RateLimitRecord``. No business logic lives here; the
LimiterEngine decides what to write and the Janitor decides what to evict.

"No record" and "a record with attempts=0" mean the same thing to readers.
A stored value that fails the record's shape checks is treated as absent and
dropped on read, so a corrupted entry heals itself instead of failing requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitRecord:
    """Attempt bookkeeping for one client key."""

    attempts: int
    """Gated attempts since the last reset or success. Never negative."""
    last_attempt_at: int
    """Epoch milliseconds of the most recent attempt."""
    lockout_until: Optional[int] = None
    """Epoch milliseconds until which the key is locked out; None when not locked."""

    def is_locked(self, now: int) -> bool:
        return self.lockout_until is not None and now < self.lockout_until

    def is_well_formed(self) -> bool:
        def _int(value: object) -> bool:
            return isinstance(value, int) and not isinstance(value, bool)

        if not _int(self.attempts) or self.attempts < 0:
            return False
        if not _int(self.last_attempt_at):
            return False
        return self.lockout_until is None or _int(self.lockout_until)


class RateLimitStore:
    """Plain mapping of key → RateLimitRecord, owned by one LimiterEngine."""

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}

    def get(self, key: str) -> Optional[RateLimitRecord]:
        record = self._records.get(key)
        if record is None:
            return None
        if not isinstance(record, RateLimitRecord) or not record.is_well_formed():
            logger.warning("Dropping malformed rate limit record", key=key)
            self._records.pop(key, None)
            return None
        return record

    def set(self, key: str, record: RateLimitRecord) -> None:
        self._records[key] = record

    def delete(self, key: str) -> bool:
        """Remove the record for key. Returns True if one existed."""
        return self._records.pop(key, None) is not None

    def items(self) -> list[tuple[str, RateLimitRecord]]:
        """Snapshot of all entries, safe to iterate while the store changes."""
        return list(self._records.items())

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))
