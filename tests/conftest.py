"""
Pytest configuration and fixtures for Guestcord tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from guest_fakes import FakeClock, FakeGateway, FakeStore  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return FakeStore()
