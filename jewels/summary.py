import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from .balance import compute_balance
from .errors import InvalidEntry
from .models import BalanceSnapshot, LedgerEntry, SummaryCheck, UserLoyaltySummary

if TYPE_CHECKING:
    from .storage import TransactionLog


_log = logging.getLogger(__name__)

SUMMARY_FIELDS = ("active_balance", "lifetime_earned", "lifetime_redeemed", "lifetime_expired")


def summary_from_snapshot(snapshot: BalanceSnapshot, previous: Optional[UserLoyaltySummary]) -> UserLoyaltySummary:
    return UserLoyaltySummary(
        user_id=snapshot.user_id,
        active_balance=snapshot.active_balance,
        lifetime_earned=snapshot.lifetime_earned,
        lifetime_redeemed=snapshot.lifetime_redeemed,
        lifetime_expired=snapshot.lifetime_expired,
        version=(previous.version if previous else 0) + 1,
        computed_at=snapshot.as_of,
        valid_until=snapshot.next_expiry_at,
    )


def build_summary(
    user_id: UUID,
    entries: list[LedgerEntry],
    as_of: datetime,
    previous: Optional[UserLoyaltySummary] = None,
) -> UserLoyaltySummary:
    snapshot = compute_balance(user_id, entries, as_of)
    if not snapshot.is_conserved():
        raise InvalidEntry(f"Conservation violated for user {user_id}: {snapshot!r}")
    return summary_from_snapshot(snapshot, previous)


class SummaryProjection:
    def __init__(self, log: "TransactionLog"):
        self.log = log

    def get(self, user_id: UUID) -> Optional[UserLoyaltySummary]:
        return self.log.get_summary(user_id)

    def refresh(self, user_id: UUID, timeout: Optional[float] = None) -> UserLoyaltySummary:
        with self.log.user_lock(user_id, timeout):
            summary = build_summary(
                user_id,
                self.log.entries_for(user_id),
                self.log.now(),
                self.log.get_summary(user_id),
            )
            self.log.store_summary(summary)
        _log.debug("refreshed summary for %s at version %d", user_id, summary.version)
        return summary

    def verify(self, user_id: UUID) -> SummaryCheck:
        stored = self.log.get_summary(user_id)
        as_of = stored.computed_at if stored else self.log.now()
        replayed = compute_balance(user_id, self.log.entries_for(user_id, as_of=as_of), as_of)

        if stored is None:
            mismatched = [f for f in SUMMARY_FIELDS if getattr(replayed, f) != 0]
        else:
            mismatched = [f for f in SUMMARY_FIELDS if getattr(stored, f) != getattr(replayed, f)]
        if mismatched:
            _log.warning("summary for %s diverges from replay on %s", user_id, ", ".join(mismatched))

        return SummaryCheck(
            user_id=user_id,
            consistent=not mismatched,
            stored=stored,
            replayed=replayed,
            mismatched_fields=mismatched,
        )
