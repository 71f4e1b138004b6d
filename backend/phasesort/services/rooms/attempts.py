from collections import namedtuple
from dataclasses import dataclass
from typing import Dict

from phasesort.models import now_ms


# kind is 'gm' or 'player'; GM attempts always use identity 'gm'
AttemptKey = namedtuple('AttemptKey', ['kind', 'room_code', 'identity'])

GM_IDENTITY = 'gm'


@dataclass
class AttemptRecord:
    fail_count: int = 0
    locked_until: int = 0  # ms epoch, 0 when not locked

    def is_locked(self, now: int) -> bool:
        return self.locked_until > now


class AttemptGuard:
    """Counts failed credential attempts and enforces a fixed lockout window.

    The ``max_failures``-th failure since the last success locks the key for
    ``lockout_ms``. Failures while locked still count but never extend the
    lock. Expired records are dropped lazily when checked.
    """

    def __init__(self, max_failures: int = 5, lockout_ms: int = 60_000, clock=now_ms):
        self.max_failures = max_failures
        self.lockout_ms = lockout_ms
        self.clock = clock
        self._records: Dict[AttemptKey, AttemptRecord] = {}

    def is_locked(self, key: AttemptKey) -> bool:
        record = self._records.get(key)
        if not record:
            return False
        if record.is_locked(self.clock()):
            return True
        if record.locked_until:
            del self._records[key]
        return False

    def register_failure(self, key: AttemptKey) -> AttemptRecord:
        now = self.clock()
        record = self._records.get(key)
        if record is None or (record.locked_until and not record.is_locked(now)):
            record = AttemptRecord()
            self._records[key] = record
        record.fail_count += 1
        if record.fail_count >= self.max_failures and not record.locked_until:
            record.locked_until = now + self.lockout_ms
        return record

    def clear(self, key: AttemptKey) -> None:
        self._records.pop(key, None)

    def __len__(self):
        return len(self._records)
