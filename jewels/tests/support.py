import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from uuid import UUID

GUEST_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_GUEST_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
DAY_ZERO = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = DAY_ZERO):
        self.current = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.current

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.current = self.current + timedelta(**kwargs)
            return self.current

    def day(self, n: int) -> datetime:
        return DAY_ZERO + timedelta(days=n)


@contextmanager
def lock_held_elsewhere(log, user_id):
    """Hold a user's ledger lock from another thread for the duration of the block."""
    acquired = threading.Event()
    release = threading.Event()

    def holder():
        with log.user_lock(user_id, timeout=5):
            acquired.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    acquired.wait(5)
    try:
        yield
    finally:
        release.set()
        thread.join(5)
