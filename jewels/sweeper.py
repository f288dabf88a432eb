"""
Expiration sweeper.

Turns lots that are past their expiry into explicit `expiration` entries so the
audit trail shows when jewels lapsed. Balances never depend on it: the
calculator already excludes expired lots. Each user is swept under that user's
lock only, and a failing user does not stop the others.
"""

import logging
import threading
from datetime import datetime
from typing import Optional
from uuid import UUID

from .balance import lapsed_lots
from .errors import SweepPartialFailure
from .models import EntryCandidate, EntryReason, SweepFailure, SweepReport
from .storage import TransactionLog


_log = logging.getLogger(__name__)


class ExpirationSweeper:
    def __init__(self, log: TransactionLog, lock_timeout: Optional[float] = None):
        self.log = log
        self.lock_timeout = lock_timeout

    def sweep_user(self, user_id: UUID, as_of: datetime) -> tuple[int, int]:
        """Expire every lapsed lot of one user. Returns (lots, jewels) expired."""
        lots = 0
        jewels = 0
        with self.log.user_lock(user_id, self.lock_timeout):
            # Lots closed by a later sweep are already gone from the full replay.
            for lot in lapsed_lots(self.log.entries_for(user_id), as_of):
                self.log.append(EntryCandidate(
                    user_id=user_id,
                    delta=-lot.remaining,
                    reason=EntryReason.EXPIRATION,
                    source_lot_id=lot.lot_id,
                    description=f"Lot {lot.lot_id} expired at {lot.expires_at.isoformat()}",
                ))
                lots += 1
                jewels += lot.remaining
        return lots, jewels

    def sweep(self, as_of: Optional[datetime] = None) -> SweepReport:
        now = self.log.now()
        if as_of is None or as_of > now:
            as_of = now
        report = SweepReport(as_of=as_of)

        for user_id in self.log.user_ids():
            try:
                lots, jewels = self.sweep_user(user_id, as_of)
            except Exception as exc:
                failure = SweepPartialFailure(user_id, exc)
                _log.warning("%s; will retry next cycle", failure, exc_info=True)
                report.failures.append(SweepFailure(user_id=user_id, error=str(exc)))
                continue
            if lots:
                report.lots_expired += lots
                report.jewels_expired += jewels
                report.users_affected += 1

        _log.info(
            "sweep as of %s expired %d lot(s) / %d jewels for %d user(s), %d failure(s)",
            as_of.isoformat(), report.lots_expired, report.jewels_expired,
            report.users_affected, len(report.failures),
        )
        return report

    def run_periodically(self, stop_event: threading.Event, interval: float) -> None:
        _log.info("expiration sweeper started, interval %.0fs", interval)
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                _log.exception("expiration sweep cycle failed; retrying next interval")
            stop_event.wait(interval)
        _log.info("expiration sweeper stopped")
