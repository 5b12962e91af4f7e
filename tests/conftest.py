"""Shared fixtures: a fresh store, a controllable clock and the wired services."""

from __future__ import annotations

import pytest

from fieldops.config import Settings
from fieldops.main import Services
from fieldops.repos.memory import MemoryStore
from tests.helpers import FakeClock, at


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(at(8))


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def services(store: MemoryStore, clock: FakeClock) -> Services:
    return Services(store, Settings(), clock=clock)
