import threading
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import LedgerSettings, configure_logging
from .models import (
    AdjustmentRequest, EarnRequest, LedgerEntry, LedgerHistoryResponse,
    RedeemRequest, RedemptionResult, SummaryCheck, SweepReport, SweepRequest, UserBalance,
)
from .service import (
    LedgerService, LedgerError, InvalidEntry, IdempotencyConflict,
    BelowMinimumThreshold, InsufficientBalance, RetryableConflict,
)


def _retry_later(exc: RetryableConflict) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc),
        headers={"Retry-After": "1"},
    )


def create_app(service: Optional[LedgerService] = None) -> FastAPI:
    settings = service.settings if service else LedgerSettings.from_env()
    configure_logging(settings.log_level)
    ledger_service = service or LedgerService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = threading.Event()
        worker = None
        if settings.sweep_enabled:
            worker = threading.Thread(
                target=ledger_service.sweeper.run_periodically,
                args=(stop, settings.sweep_interval_seconds),
                name="jewels-sweeper",
                daemon=True,
            )
            worker.start()
        yield
        stop.set()
        if worker is not None:
            worker.join(timeout=5)

    app = FastAPI(
        title="Jewels Ledger API",
        description="Loyalty jewels ledger with FIFO lots, expiry and audited redemptions",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.ledger_service = ledger_service

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "jewels-ledger"}

    @app.post("/users/{user_id}/earn", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED, tags=["Jewels"])
    def post_earn(user_id: UUID, request: EarnRequest) -> LedgerEntry:
        try:
            return ledger_service.post_earn(
                user_id,
                request.jewels,
                reason=request.reason,
                expires_at=request.expires_at,
                never_expires=request.never_expires,
                idempotency_key=request.idempotency_key,
                reference=request.reference,
                description=request.description,
            )
        except IdempotencyConflict as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except RetryableConflict as e:
            raise _retry_later(e)
        except LedgerError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/users/{user_id}/redeem", response_model=RedemptionResult, tags=["Jewels"])
    def redeem(user_id: UUID, request: RedeemRequest) -> RedemptionResult:
        try:
            return ledger_service.redeem(user_id, request.jewels, reference=request.reference)
        except BelowMinimumThreshold as e:
            raise HTTPException(
                status_code=422,
                detail={"error": "below_minimum_threshold", "message": str(e),
                        "minimum": e.minimum, "requested": e.requested},
            )
        except InsufficientBalance as e:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": "insufficient_balance", "message": str(e),
                        "active_balance": e.active_balance, "requested": e.requested},
            )
        except RetryableConflict as e:
            raise _retry_later(e)
        except InvalidEntry as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/admin/users/{user_id}/adjustments", response_model=LedgerEntry,
              status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def adjust(user_id: UUID, request: AdjustmentRequest) -> LedgerEntry:
        try:
            return ledger_service.adjust(
                user_id,
                request.adjustment_type,
                request.amount,
                reason=request.reason,
                admin_notes=request.admin_notes,
                performed_by=request.performed_by,
                idempotency_key=request.idempotency_key,
            )
        except IdempotencyConflict as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except RetryableConflict as e:
            raise _retry_later(e)
        except LedgerError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Jewels"])
    def get_user_balance(user_id: UUID) -> UserBalance:
        return ledger_service.get_balance(user_id)

    @app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Jewels"])
    def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        if limit < 1 or offset < 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="limit must be >= 1 and offset >= 0")
        return ledger_service.get_ledger_history(user_id, limit, offset)

    @app.get("/admin/users/{user_id}/summary/verify", response_model=SummaryCheck, tags=["Admin"])
    def verify_summary(user_id: UUID) -> SummaryCheck:
        return ledger_service.verify_summary(user_id)

    @app.post("/admin/sweep", response_model=SweepReport, tags=["Admin"])
    def sweep(request: Optional[SweepRequest] = None) -> SweepReport:
        as_of = request.as_of if request else None
        return ledger_service.sweep_expirations(as_of)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
