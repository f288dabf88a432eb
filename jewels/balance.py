"""
Balance calculator.

Replays a user's ledger entries in (created_at, id) order and keeps a FIFO
queue of earn lots. Redemptions and negative adjustments draw down the oldest
lots that were still unexpired when the entry was written; expirations close
the lot they name. Lots past their expiry are never active, whether or not the
sweeper has written their expiration entry yet.

Everything here is pure: no locks, no storage, no clock.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from .errors import InvalidEntry
from .models import (
    BalanceSnapshot,
    EntryCandidate,
    EntryReason,
    LedgerEntry,
    Lot,
    LotAllocation,
)


@dataclass
class _OpenLot:
    lot_id: int
    granted: int
    remaining: int
    created_at: datetime
    expires_at: Optional[datetime]

    def spendable_at(self, moment: datetime) -> bool:
        if self.remaining <= 0:
            return False
        return self.expires_at is None or self.expires_at > moment


@dataclass
class _Replay:
    lots: list
    earned: int = 0
    redeemed: int = 0
    expired: int = 0
    entry_count: int = 0
    last_entry_at: Optional[datetime] = None


def order_entries(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    return sorted(entries, key=lambda e: e.sort_key)


def _draw_fifo(lots: list, jewels: int, at: datetime) -> list[LotAllocation]:
    available = sum(lot.remaining for lot in lots if lot.spendable_at(at))
    if available < jewels:
        raise InvalidEntry(
            f"Cannot fund {jewels} jewels at {at.isoformat()}: only {available} unexpired"
        )
    allocations = []
    needed = jewels
    for lot in lots:
        if needed == 0:
            break
        if not lot.spendable_at(at):
            continue
        take = min(lot.remaining, needed)
        lot.remaining -= take
        needed -= take
        allocations.append(LotAllocation(lot_id=lot.lot_id, jewels=take))
    return allocations


def _close_lot(lots: list, lot_id: Optional[int], jewels: int) -> _OpenLot:
    lot = next((lot for lot in lots if lot.lot_id == lot_id), None)
    if lot is None:
        raise InvalidEntry(f"Expiration references unknown lot {lot_id}")
    if lot.remaining < jewels:
        raise InvalidEntry(
            f"Expiration of {jewels} jewels exceeds the {lot.remaining} remaining in lot {lot_id}"
        )
    lot.remaining -= jewels
    return lot


def _replay(entries: Iterable[LedgerEntry], as_of: Optional[datetime] = None) -> _Replay:
    state = _Replay(lots=[])
    for entry in order_entries(entries):
        if as_of is not None and entry.created_at > as_of:
            break
        state.entry_count += 1
        state.last_entry_at = entry.created_at
        if entry.delta > 0:
            state.lots.append(_OpenLot(
                lot_id=entry.id,
                granted=entry.delta,
                remaining=entry.delta,
                created_at=entry.created_at,
                expires_at=entry.expires_at,
            ))
            state.earned += entry.delta
        elif entry.reason == EntryReason.EXPIRATION:
            _close_lot(state.lots, entry.source_lot_id, -entry.delta)
            state.expired += -entry.delta
        else:
            _draw_fifo(state.lots, -entry.delta, entry.created_at)
            state.redeemed += -entry.delta
    return state


def compute_balance(user_id: UUID, entries: Iterable[LedgerEntry], as_of: datetime) -> BalanceSnapshot:
    state = _replay(entries, as_of)

    open_lots = []
    active = 0
    pending = 0
    next_expiry = None
    for lot in state.lots:
        if lot.remaining <= 0:
            continue
        expired = not lot.spendable_at(as_of)
        if expired:
            pending += lot.remaining
        else:
            active += lot.remaining
            if lot.expires_at is not None and (next_expiry is None or lot.expires_at < next_expiry):
                next_expiry = lot.expires_at
        open_lots.append(Lot(
            lot_id=lot.lot_id,
            granted=lot.granted,
            remaining=lot.remaining,
            created_at=lot.created_at,
            expires_at=lot.expires_at,
            expired=expired,
        ))

    return BalanceSnapshot(
        user_id=user_id,
        as_of=as_of,
        active_balance=active,
        lifetime_earned=state.earned,
        lifetime_redeemed=state.redeemed,
        lifetime_expired=state.expired + pending,
        pending_expiry=pending,
        open_lots=open_lots,
        next_expiry_at=next_expiry,
        entry_count=state.entry_count,
        last_entry_at=state.last_entry_at,
    )


def plan_consumption(entries: Iterable[LedgerEntry], jewels: int, at: datetime) -> list[LotAllocation]:
    """Return the FIFO allocations a new debit of `jewels` written at `at` would make."""
    if jewels <= 0:
        raise InvalidEntry("Consumption must be a positive number of jewels")
    state = _replay(entries)
    return _draw_fifo(state.lots, jewels, at)


def lapsed_lots(entries: Iterable[LedgerEntry], as_of: datetime) -> list[Lot]:
    """Lots still holding jewels after every entry in the log that expired at or before `as_of`."""
    state = _replay(entries)
    return [
        Lot(
            lot_id=lot.lot_id,
            granted=lot.granted,
            remaining=lot.remaining,
            created_at=lot.created_at,
            expires_at=lot.expires_at,
            expired=True,
        )
        for lot in state.lots
        if lot.remaining > 0 and lot.expires_at is not None and lot.expires_at <= as_of
    ]


_EARN_ONLY = {EntryReason.BOOKING_REWARD}
_DEBIT_ONLY = {EntryReason.REDEMPTION, EntryReason.EXPIRATION}


def fund_entry(entries: list[LedgerEntry], candidate: EntryCandidate, at: datetime) -> tuple[Optional[int], list[LotAllocation]]:
    """
    Validate a candidate against the user's current log.

    Returns the (source_lot_id, allocations) the stored entry should carry.
    Raises InvalidEntry for anything that must not reach the log.
    """
    if candidate.delta == 0:
        raise InvalidEntry("Ledger entries must have a non-zero delta")
    if candidate.reason in _EARN_ONLY and candidate.delta < 0:
        raise InvalidEntry(f"{candidate.reason.value} entries must be positive")
    if candidate.reason in _DEBIT_ONLY and candidate.delta > 0:
        raise InvalidEntry(f"{candidate.reason.value} entries must be negative")

    if candidate.delta > 0:
        if candidate.source_lot_id is not None:
            raise InvalidEntry("Earn entries cannot reference a source lot")
        if candidate.expires_at is not None and candidate.expires_at <= at:
            raise InvalidEntry("Earn entries must expire after they are written")
        return None, []

    if candidate.expires_at is not None:
        raise InvalidEntry("Only earn entries may carry an expiry")

    jewels = -candidate.delta
    if candidate.reason == EntryReason.EXPIRATION:
        if candidate.source_lot_id is None:
            raise InvalidEntry("Expiration entries must reference the lot they close")
        state = _replay(entries)
        lot = _close_lot(state.lots, candidate.source_lot_id, jewels)
        if lot.expires_at is None or lot.expires_at > at:
            raise InvalidEntry(f"Lot {lot.lot_id} has not expired at {at.isoformat()}")
        return lot.lot_id, [LotAllocation(lot_id=lot.lot_id, jewels=jewels)]

    allocations = plan_consumption(entries, jewels, at)
    return allocations[0].lot_id, allocations
