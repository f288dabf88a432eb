"""
Loyalty Jewels Ledger

This module provides:
- Immutable, append-only ledger entries per guest
- FIFO earn lots with per-lot expiry
- Redemptions with a minimum threshold and a configured currency rate
- An expiration sweeper that records lapsed lots for audit
- A per-guest summary cache that can always be rebuilt from the log
"""

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
    EntryReason,
    LedgerEntry,
    BalanceSnapshot,
    UserLoyaltySummary,
    RedemptionResult,
    SweepReport,
)
from .service import LedgerService

__all__ = [
    "LedgerSettings",
    "LedgerError",
    "InvalidEntry",
    "IdempotencyConflict",
    "BelowMinimumThreshold",
    "InsufficientBalance",
    "RetryableConflict",
    "SweepPartialFailure",
    "EntryReason",
    "LedgerEntry",
    "BalanceSnapshot",
    "UserLoyaltySummary",
    "RedemptionResult",
    "SweepReport",
    "LedgerService",
]
