import logging
import os
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, Field


_log = logging.getLogger(__name__)

ENV_PREFIX = "JEWELS_"


def _env_raw(name: str) -> Optional[str]:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_raw(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("ignoring invalid %s%s=%r", ENV_PREFIX, name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env_raw(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        _log.warning("ignoring invalid %s%s=%r", ENV_PREFIX, name, raw)
        return default


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = _env_raw(name)
    if raw is None:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        _log.warning("ignoring invalid %s%s=%r", ENV_PREFIX, name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_raw(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


class LedgerSettings(BaseModel):
    min_redemption: int = Field(default=100, ge=1)
    jewel_to_currency_rate: Decimal = Field(default=Decimal("1"), gt=0)
    currency: str = "INR"
    default_lot_lifetime_days: int = Field(default=365, ge=1)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)
    sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    sweep_enabled: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        defaults = cls()
        return cls(
            min_redemption=_env_int("MIN_REDEMPTION", defaults.min_redemption),
            jewel_to_currency_rate=_env_decimal("TO_CURRENCY_RATE", defaults.jewel_to_currency_rate),
            currency=_env_raw("CURRENCY") or defaults.currency,
            default_lot_lifetime_days=_env_int("DEFAULT_LOT_LIFETIME_DAYS", defaults.default_lot_lifetime_days),
            lock_timeout_seconds=_env_float("LOCK_TIMEOUT_SECONDS", defaults.lock_timeout_seconds),
            sweep_interval_seconds=_env_float("SWEEP_INTERVAL_SECONDS", defaults.sweep_interval_seconds),
            sweep_enabled=_env_bool("SWEEP_ENABLED", defaults.sweep_enabled),
            log_level=(_env_raw("LOG_LEVEL") or defaults.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("jewels")
    if not any(getattr(h, "_jewels_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._jewels_handler = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
