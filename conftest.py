import itertools

import pytest

from config import settings
from database import create_tables, get_db_connection
from lending import LendingLedger


@pytest.fixture(autouse=True)
def _no_demo_seed(monkeypatch):
    # Tests start from an empty catalog unless they ask for seed data
    monkeypatch.setattr(settings, "seed_demo_data", False)


@pytest.fixture
def db_file(tmp_path):
    # A separate database file for every test
    return str(tmp_path / "ledger.db")


@pytest.fixture
def clock():
    """Deterministic clock: each call is one second after the previous one."""
    ticks = itertools.count()

    def now() -> str:
        second = next(ticks)
        return f"2025-01-01T{second // 3600:02d}:{second // 60 % 60:02d}:{second % 60:02d}.000000+00:00"

    return now


@pytest.fixture
def ledger(db_file, clock):
    return LendingLedger(db_file, clock=clock)


@pytest.fixture
def conn(db_file):
    create_tables(db_file)
    connection = get_db_connection(db_file)
    yield connection
    connection.close()
