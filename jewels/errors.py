from typing import Optional
from uuid import UUID


class LedgerError(Exception):
    pass


class InvalidEntry(LedgerError):
    pass


class IdempotencyConflict(LedgerError):
    pass


class BelowMinimumThreshold(LedgerError):
    def __init__(self, requested: int, minimum: int):
        self.requested = requested
        self.minimum = minimum
        super().__init__(f"Redemption of {requested} jewels is below the minimum of {minimum}")


class InsufficientBalance(LedgerError):
    def __init__(self, requested: int, active_balance: int):
        self.requested = requested
        self.active_balance = active_balance
        super().__init__(
            f"Requested {requested} jewels but only {active_balance} are available"
        )


class RetryableConflict(LedgerError):
    def __init__(self, user_id: UUID, timeout: Optional[float] = None):
        self.user_id = user_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for ledger lock of user {user_id}")


class SweepPartialFailure(LedgerError):
    def __init__(self, user_id: UUID, cause: BaseException):
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Expiration sweep failed for user {user_id}: {cause}")
