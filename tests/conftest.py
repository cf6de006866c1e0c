"""
Shared fixtures: an in-memory store with seeded statistics.
"""

import pytest

from dojoscheduler.adapters.memory_store import InMemoryStore
from dojoscheduler.config import TableNames
from dojoscheduler.domain.models import Availability
from dojoscheduler.services.booking import BookingService
from dojoscheduler.services.repository import SchedulerRepository
from dojoscheduler.services.statistics import StatisticsRecorder

COHORTS = ["1000-1200", "1200-1400", "1400-1600", "1600-1800"]
TYPES = ["ENDGAME", "MIDDLEGAME", "CLASSICAL_GAME"]


@pytest.fixture
def tables() -> TableNames:
    return TableNames().with_stage("test")


@pytest.fixture
def store(tables) -> InMemoryStore:
    return InMemoryStore(tables.key_schema())


@pytest.fixture
def repository(store, tables) -> SchedulerRepository:
    return SchedulerRepository(store, tables)


@pytest.fixture
def statistics(repository) -> StatisticsRecorder:
    recorder = StatisticsRecorder(repository)
    recorder.seed(COHORTS, TYPES)
    return recorder


@pytest.fixture
def service(repository, statistics) -> BookingService:
    return BookingService(repository, statistics)


@pytest.fixture
def make_availability():
    """Factory for availabilities owned by alice unless overridden."""

    def _make(**overrides) -> Availability:
        fields = {
            "owner": "alice",
            "id": "42",
            "owner_cohort": "1200-1400",
            "start_time": "2024-11-25T18:00:00+00:00",
            "end_time": "2024-11-25T19:00:00+00:00",
            "types": ["ENDGAME"],
            "cohorts": ["1200-1400", "1400-1600"],
        }
        fields.update(overrides)
        return Availability(**fields)

    return _make
