import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from .balance import compute_balance
from .config import LedgerSettings
from .errors import BelowMinimumThreshold, InsufficientBalance
from .models import EntryCandidate, EntryReason, RedemptionResult
from .storage import TransactionLog


_log = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def jewels_to_currency(jewels: int, rate: Decimal) -> Decimal:
    return (Decimal(jewels) * rate).quantize(CENTS, rounding=ROUND_HALF_UP)


class RedemptionEngine:
    def __init__(self, log: TransactionLog, settings: LedgerSettings):
        self.log = log
        self.settings = settings

    def redeem(
        self,
        user_id: UUID,
        jewels_requested: int,
        reference: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RedemptionResult:
        minimum = self.settings.min_redemption
        if jewels_requested < minimum:
            _log.info("rejected redemption of %d for %s: below minimum %d", jewels_requested, user_id, minimum)
            raise BelowMinimumThreshold(jewels_requested, minimum)

        with self.log.user_lock(user_id, timeout):
            now = self.log.now()
            snapshot = compute_balance(user_id, self.log.entries_for(user_id), now)
            if snapshot.active_balance < jewels_requested:
                _log.info(
                    "rejected redemption of %d for %s: active balance %d",
                    jewels_requested, user_id, snapshot.active_balance,
                )
                raise InsufficientBalance(jewels_requested, snapshot.active_balance)

            entry = self.log.append(EntryCandidate(
                user_id=user_id,
                delta=-jewels_requested,
                reason=EntryReason.REDEMPTION,
                reference=reference,
                description=f"Redeemed {jewels_requested} jewels",
            ))
            summary = self.log.get_summary(user_id)

        discount = jewels_to_currency(jewels_requested, self.settings.jewel_to_currency_rate)
        _log.info(
            "redeemed %d jewels for %s across %d lot(s), discount %s %s",
            jewels_requested, user_id, len(entry.allocations), discount, self.settings.currency,
        )
        return RedemptionResult(
            jewels_redeemed=jewels_requested,
            discount_amount=discount,
            currency=self.settings.currency,
            new_active_balance=summary.active_balance,
            entry=entry,
        )
