import pytest

from jewels.config import LedgerSettings
from jewels.service import LedgerService

from .support import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return LedgerSettings(lock_timeout_seconds=2.0)


@pytest.fixture
def service(settings, clock):
    return LedgerService(settings=settings, clock=clock)
