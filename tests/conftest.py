"""Shared pytest fixtures. Fakes live in tests/fixtures."""

import pytest

from tests.fixtures import (
    FakeClock,
    FakeCollector,
    FakeMonotonic,
    FakeStore,
    RecordingSleep,
    default_tier_configs,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def tier_configs():
    return default_tier_configs()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def collector():
    return FakeCollector()
