"""
Shared fixtures for the lending engine test suite
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coop_lending.config import LendingConfig
from coop_lending.currency import Currency, Money
from coop_lending.storage import InMemoryStorage
from coop_lending.service import LendingService


class FixedClock:
    """Deterministic clock for created/updated timestamps"""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def idr(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.IDR)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config():
    return LendingConfig(database_url="memory://", _env_file=None)


@pytest.fixture
def service(config, clock):
    """Lending service on in-memory storage with a fixed clock"""
    return LendingService(config=config, storage=InMemoryStorage(), clock=clock)


@pytest.fixture
def disbursed_loan(service):
    """Scenario loan: 12,000,000 IDR at 12% over 12 months, disbursed 2024-01-15"""
    loan = service.create_loan("cust-001", idr(12_000_000), Decimal("12"), 12)
    service.approve_loan(loan.id)
    return service.disburse_loan(loan.id, date(2024, 1, 15))
