"""
Pytest configuration and fixtures for stance evolution tests.
"""
import itertools
import sys
import warnings
from datetime import datetime, timedelta
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from stance_core.controller import StanceController
from stance_core.state import create_default_stance

# Filter ResourceWarnings globally before any imports
warnings.filterwarnings("ignore", category=ResourceWarning)


def pytest_configure(config):
    """Configure pytest to filter ResourceWarnings from SQLite."""
    warnings.filterwarnings(
        "ignore",
        message="unclosed database",
        category=ResourceWarning
    )


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def sequential_ids(prefix: str = "id"):
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter)}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def id_factory():
    return sequential_ids()


@pytest.fixture
def controller(clock):
    return StanceController(clock=clock, id_factory=sequential_ids("conv-"))


@pytest.fixture
def default_stance():
    return create_default_stance()


@pytest.fixture(autouse=True)
def _clean_runtime_overrides():
    """Runtime threshold overrides are module state; reset around every test."""
    from src.runtime_config import clear_overrides
    clear_overrides()
    yield
    clear_overrides()
