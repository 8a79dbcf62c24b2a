"""Pytest fixtures for the Policy Pulse tests."""

from datetime import datetime

import pytest

from config import PACIFIC
from sales_store import SalesStore


@pytest.fixture
def data_file(tmp_path):
    """Path for a sales file inside a temporary data directory."""
    return tmp_path / 'data' / 'sales.json'


@pytest.fixture
def store(data_file):
    """An empty store writing to a temporary file."""
    return SalesStore(data_file)


@pytest.fixture
def pacific():
    """Build aware datetimes on the Pacific wall clock."""
    def make(year, month, day, hour=12, minute=0):
        return datetime(year, month, day, hour, minute, tzinfo=PACIFIC)
    return make
