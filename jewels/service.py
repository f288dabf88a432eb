import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from .balance import compute_balance
from .config import LedgerSettings
from .errors import (
    BelowMinimumThreshold,
    IdempotencyConflict,
    InsufficientBalance,
    InvalidEntry,
    LedgerError,
    RetryableConflict,
    SweepPartialFailure,
)
from .models import (
    AdjustmentType,
    EntryCandidate,
    EntryReason,
    LedgerEntry,
    LedgerHistoryResponse,
    RedemptionResult,
    SummaryCheck,
    SweepReport,
    UserBalance,
    UserLoyaltySummary,
)
from .redemption import RedemptionEngine
from .storage import Clock, TransactionLog, as_utc
from .summary import SummaryProjection
from .sweeper import ExpirationSweeper


_log = logging.getLogger(__name__)

__all__ = [
    "LedgerService",
    "LedgerError",
    "InvalidEntry",
    "IdempotencyConflict",
    "BelowMinimumThreshold",
    "InsufficientBalance",
    "RetryableConflict",
    "SweepPartialFailure",
]

EARN_REASONS = (EntryReason.BOOKING_REWARD, EntryReason.MANUAL_ADJUSTMENT)


class LedgerService:
    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        log: Optional[TransactionLog] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or LedgerSettings()
        self.log = log or TransactionLog(clock=clock, lock_timeout=self.settings.lock_timeout_seconds)
        self.projection = SummaryProjection(self.log)
        self.redemptions = RedemptionEngine(self.log, self.settings)
        self.sweeper = ExpirationSweeper(self.log)

    def _default_expiry(self) -> datetime:
        return self.log.now() + timedelta(days=self.settings.default_lot_lifetime_days)

    def post_earn(
        self,
        user_id: UUID,
        jewels: int,
        reason: EntryReason = EntryReason.BOOKING_REWARD,
        expires_at: Optional[datetime] = None,
        never_expires: bool = False,
        idempotency_key: Optional[str] = None,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> LedgerEntry:
        if jewels <= 0:
            raise InvalidEntry("Earned jewels must be positive")
        if reason not in EARN_REASONS:
            raise InvalidEntry(f"{reason.value} cannot be used to earn jewels")
        expires_at = as_utc(expires_at)
        if never_expires and expires_at is not None:
            raise InvalidEntry("An entry cannot both expire and never expire")
        if not never_expires and expires_at is None:
            expires_at = self._default_expiry()

        return self.log.append(EntryCandidate(
            user_id=user_id,
            delta=jewels,
            reason=reason,
            expires_at=expires_at,
            idempotency_key=idempotency_key,
            reference=reference,
            description=description or f"Earned {jewels} jewels",
            performed_by=performed_by,
        ))

    def adjust(
        self,
        user_id: UUID,
        adjustment_type: AdjustmentType,
        amount: int,
        reason: Optional[str] = None,
        admin_notes: Optional[str] = None,
        performed_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        if amount <= 0:
            raise InvalidEntry("Adjustment amount must be positive")

        description = reason or "Manual adjustment"
        if admin_notes:
            description = f"{description} ({admin_notes})"

        if adjustment_type == AdjustmentType.ADD:
            return self.post_earn(
                user_id,
                amount,
                reason=EntryReason.MANUAL_ADJUSTMENT,
                idempotency_key=idempotency_key,
                description=description,
                performed_by=performed_by,
            )

        entry = self.log.append(EntryCandidate(
            user_id=user_id,
            delta=-amount,
            reason=EntryReason.MANUAL_ADJUSTMENT,
            idempotency_key=idempotency_key,
            description=description,
            performed_by=performed_by,
        ))
        _log.info("manual removal of %d jewels for %s by %s", amount, user_id, performed_by or "unknown")
        return entry

    def redeem(self, user_id: UUID, jewels_requested: int, reference: Optional[str] = None) -> RedemptionResult:
        return self.redemptions.redeem(user_id, jewels_requested, reference=reference)

    def get_balance(self, user_id: UUID) -> UserBalance:
        now = self.log.now()
        summary = self.log.get_summary(user_id)
        if summary is not None and summary.is_fresh_at(now):
            return UserBalance(
                user_id=user_id,
                active=summary.active_balance,
                lifetime_earned=summary.lifetime_earned,
                lifetime_redeemed=summary.lifetime_redeemed,
                lifetime_expired=summary.lifetime_expired,
                as_of=now,
                from_cache=True,
            )

        snapshot = compute_balance(user_id, self.log.entries_for(user_id), now)
        return UserBalance(
            user_id=user_id,
            active=snapshot.active_balance,
            lifetime_earned=snapshot.lifetime_earned,
            lifetime_redeemed=snapshot.lifetime_redeemed,
            lifetime_expired=snapshot.lifetime_expired,
            as_of=now,
        )

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        all_entries = self.log.entries_for(user_id)
        all_entries.reverse()
        paginated = all_entries[offset:offset + limit]
        balance = self.get_balance(user_id)

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=paginated,
            total_count=len(all_entries),
            active_balance=balance.active,
        )

    def sweep_expirations(self, as_of: Optional[datetime] = None) -> SweepReport:
        return self.sweeper.sweep(as_utc(as_of))

    def refresh_summary(self, user_id: UUID) -> UserLoyaltySummary:
        return self.projection.refresh(user_id)

    def verify_summary(self, user_id: UUID) -> SummaryCheck:
        return self.projection.verify(user_id)
