"""
Shared fixtures: an engine over in-memory storage with a controllable clock
"""

from datetime import date, timedelta

import pytest

from finance_core.config import FinanceConfig
from finance_core.storage import InMemoryStorage
from finance_core.system import FinanceSystem


class FixedClock:
    """Callable clock whose date tests can move"""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> date:
        self.today = self.today + timedelta(days=days)
        return self.today


@pytest.fixture
def clock():
    return FixedClock(date(2025, 3, 15))


@pytest.fixture
def config():
    return FinanceConfig(database_url="memory://", scheduler_enabled=False, _env_file=None)


@pytest.fixture
def system(clock, config):
    finance_system = FinanceSystem(storage=InMemoryStorage(), config=config, clock=clock)
    yield finance_system
    finance_system.close()
