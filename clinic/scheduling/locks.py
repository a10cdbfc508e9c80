"""Per doctor/day locks that serialize slot-claiming transitions."""

import logging
from contextlib import contextmanager
from datetime import date
from threading import Lock

from clinic.scheduling.errors import BusyError

logger = logging.getLogger(__name__)


class DoctorDayLocks:
    """Registry of one lock per ``(doctor_id, date)``.

    Locks are process-local. Entries for days before today are dropped, unless
    held, whenever a new key is registered.
    """

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._registry_lock = Lock()
        self._locks: dict[tuple[int, date], Lock] = {}

    def _lock_for(self, doctor_id: int, day: date) -> Lock:
        key = (doctor_id, day)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                self._evict_past_days(date.today())
                lock = Lock()
                self._locks[key] = lock
            return lock

    def _evict_past_days(self, today: date) -> None:
        stale = [key for key, lock in self._locks.items() if key[1] < today and not lock.locked()]
        for key in stale:
            del self._locks[key]
        if stale:
            logger.debug('Evicted %s schedule locks for past days', len(stale))

    @contextmanager
    def hold(self, doctor_id: int, day: date):
        lock = self._lock_for(doctor_id, day)
        if not lock.acquire(timeout=self.timeout_seconds):
            logger.warning(
                'Timed out after %.1fs waiting for schedule lock doctor=%s day=%s',
                self.timeout_seconds,
                doctor_id,
                day,
            )
            raise BusyError(doctor_id, day)
        try:
            yield
        finally:
            lock.release()
