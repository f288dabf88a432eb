from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class EntryReason(str, Enum):
    BOOKING_REWARD = "booking_reward"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    REDEMPTION = "redemption"
    EXPIRATION = "expiration"


class AdjustmentType(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class LotAllocation(BaseModel):
    lot_id: int
    jewels: int = Field(..., gt=0)

    model_config = ConfigDict(frozen=True)


class EntryCandidate(BaseModel):
    user_id: UUID
    delta: int
    reason: EntryReason
    expires_at: Optional[datetime] = None
    source_lot_id: Optional[int] = None
    idempotency_key: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    performed_by: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class LedgerEntry(BaseModel):
    id: int
    user_id: UUID
    delta: int
    reason: EntryReason
    created_at: datetime
    expires_at: Optional[datetime] = None
    source_lot_id: Optional[int] = None
    allocations: list[LotAllocation] = Field(default_factory=list)
    idempotency_key: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    performed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.id)


class Lot(BaseModel):
    lot_id: int
    granted: int
    remaining: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    expired: bool = False


class BalanceSnapshot(BaseModel):
    user_id: UUID
    as_of: datetime
    active_balance: int = 0
    lifetime_earned: int = 0
    lifetime_redeemed: int = 0
    lifetime_expired: int = 0
    pending_expiry: int = 0
    open_lots: list[Lot] = Field(default_factory=list)
    next_expiry_at: Optional[datetime] = None
    entry_count: int = 0
    last_entry_at: Optional[datetime] = None

    @property
    def expired_lots(self) -> list[Lot]:
        return [lot for lot in self.open_lots if lot.expired]

    def is_conserved(self) -> bool:
        return self.lifetime_earned == (
            self.active_balance + self.lifetime_redeemed + self.lifetime_expired
        )


class UserLoyaltySummary(BaseModel):
    user_id: UUID
    active_balance: int = 0
    lifetime_earned: int = 0
    lifetime_redeemed: int = 0
    lifetime_expired: int = 0
    version: int = 0
    computed_at: datetime
    valid_until: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def is_fresh_at(self, moment: datetime) -> bool:
        return self.valid_until is None or moment < self.valid_until


class UserBalance(BaseModel):
    user_id: UUID
    active: int
    lifetime_earned: int
    lifetime_redeemed: int
    lifetime_expired: int
    as_of: datetime
    from_cache: bool = False

    model_config = ConfigDict(from_attributes=True)


class RedemptionResult(BaseModel):
    jewels_redeemed: int
    discount_amount: Decimal
    currency: str = "INR"
    new_active_balance: int
    entry: LedgerEntry


class SweepFailure(BaseModel):
    user_id: UUID
    error: str


class SweepReport(BaseModel):
    as_of: datetime
    lots_expired: int = 0
    users_affected: int = 0
    jewels_expired: int = 0
    failures: list[SweepFailure] = Field(default_factory=list)


class SummaryCheck(BaseModel):
    user_id: UUID
    consistent: bool
    stored: Optional[UserLoyaltySummary] = None
    replayed: BalanceSnapshot
    mismatched_fields: list[str] = Field(default_factory=list)


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    active_balance: int


class EarnRequest(BaseModel):
    jewels: int = Field(..., gt=0, description="Jewels to grant, already computed by the caller")
    reason: EntryReason = EntryReason.BOOKING_REWARD
    expires_at: Optional[datetime] = None
    never_expires: bool = False
    idempotency_key: Optional[str] = Field(default=None, description="Unique key to prevent duplicates")
    reference: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "jewels": 150,
            "reason": "booking_reward",
            "idempotency_key": "booking-BK-2024-0042-reward",
            "reference": "BK-2024-0042"
        }
    })


class RedeemRequest(BaseModel):
    jewels: int = Field(..., description="Jewels to redeem against the booking total")
    reference: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"jewels": 120, "reference": "BK-2024-0057"}
    })


class AdjustmentRequest(BaseModel):
    adjustment_type: AdjustmentType
    amount: int = Field(..., gt=0)
    reason: Optional[str] = None
    admin_notes: Optional[str] = None
    performed_by: Optional[str] = None
    idempotency_key: Optional[str] = None


class SweepRequest(BaseModel):
    as_of: Optional[datetime] = None
