import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from uuid import UUID

from .balance import fund_entry, order_entries
from .errors import IdempotencyConflict, RetryableConflict
from .models import EntryCandidate, LedgerEntry, UserLoyaltySummary
from .summary import build_summary


_log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class TransactionLog:
    """
    Append-only ledger store with per-user serialization.

    Entries and summaries live in memory. Every write for a user happens under
    that user's re-entrant lock, and the entry and its refreshed summary are
    committed together or not at all. One lock is kept for every user ever
    seen; the registry is never pruned, so a lock held by one thread is never
    replaced under another.
    """

    def __init__(self, clock: Optional[Clock] = None, lock_timeout: float = 5.0):
        self._clock = clock or utc_now
        self.lock_timeout = lock_timeout
        self._entries: dict[UUID, list[LedgerEntry]] = {}
        self._summaries: dict[UUID, UserLoyaltySummary] = {}
        self._idempotency_index: dict[tuple[UUID, str], LedgerEntry] = {}
        self._next_id = 1
        self._registry_lock = threading.Lock()
        self._user_locks: dict[UUID, threading.RLock] = {}

    def now(self) -> datetime:
        return self._clock()

    def _lock_for(self, user_id: UUID) -> threading.RLock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.RLock()
            return lock

    @contextmanager
    def user_lock(self, user_id: UUID, timeout: Optional[float] = None) -> Iterator[None]:
        wait = self.lock_timeout if timeout is None else timeout
        lock = self._lock_for(user_id)
        if not lock.acquire(timeout=wait):
            _log.warning("lock wait for user %s timed out after %.3fs", user_id, wait)
            raise RetryableConflict(user_id, wait)
        try:
            yield
        finally:
            lock.release()

    def user_ids(self) -> list[UUID]:
        with self._registry_lock:
            return list(self._entries.keys())

    def entries_for(self, user_id: UUID, as_of: Optional[datetime] = None) -> list[LedgerEntry]:
        with self._registry_lock:
            entries = list(self._entries.get(user_id, ()))
        if as_of is not None:
            entries = [e for e in entries if e.created_at <= as_of]
        return order_entries(entries)

    def get_summary(self, user_id: UUID) -> Optional[UserLoyaltySummary]:
        with self._registry_lock:
            return self._summaries.get(user_id)

    def store_summary(self, summary: UserLoyaltySummary) -> None:
        with self._registry_lock:
            current = self._summaries.get(summary.user_id)
            if current is not None and summary.version <= current.version:
                raise RetryableConflict(summary.user_id)
            self._summaries[summary.user_id] = summary

    def find_by_idempotency_key(self, user_id: UUID, key: str) -> Optional[LedgerEntry]:
        with self._registry_lock:
            return self._idempotency_index.get((user_id, key))

    def _check_idempotency(self, candidate: EntryCandidate) -> Optional[LedgerEntry]:
        if not candidate.idempotency_key:
            return None
        existing = self.find_by_idempotency_key(candidate.user_id, candidate.idempotency_key)
        if existing is None:
            return None
        if (existing.delta, existing.reason, existing.reference) != (
            candidate.delta, candidate.reason, candidate.reference
        ):
            raise IdempotencyConflict(
                f"Idempotency key {candidate.idempotency_key!r} was already used for a different entry"
            )
        return existing

    def _write_time(self, user_id: UUID) -> datetime:
        now = self._clock()
        entries = self._entries.get(user_id)
        if entries and entries[-1].created_at > now:
            return entries[-1].created_at
        return now

    def append(self, candidate: EntryCandidate, timeout: Optional[float] = None) -> LedgerEntry:
        user_id = candidate.user_id
        with self.user_lock(user_id, timeout):
            existing = self._check_idempotency(candidate)
            if existing is not None:
                _log.info("idempotent replay of entry %d for %s", existing.id, user_id)
                return existing

            now = self._write_time(user_id)
            entries = self.entries_for(user_id)
            source_lot_id, allocations = fund_entry(entries, candidate, now)

            with self._registry_lock:
                entry_id = self._next_id
                self._next_id += 1

            entry = LedgerEntry(
                id=entry_id,
                user_id=user_id,
                delta=candidate.delta,
                reason=candidate.reason,
                created_at=now,
                expires_at=candidate.expires_at,
                source_lot_id=source_lot_id,
                allocations=allocations,
                idempotency_key=candidate.idempotency_key,
                reference=candidate.reference,
                description=candidate.description,
                performed_by=candidate.performed_by,
            )
            summary = build_summary(user_id, entries + [entry], now, self.get_summary(user_id))

            with self._registry_lock:
                self._entries.setdefault(user_id, []).append(entry)
                self._summaries[user_id] = summary
                if entry.idempotency_key:
                    self._idempotency_index[(user_id, entry.idempotency_key)] = entry

        _log.info(
            "appended entry %d for %s: %+d (%s), active balance %d",
            entry.id, user_id, entry.delta, entry.reason.value, summary.active_balance,
        )
        return entry
