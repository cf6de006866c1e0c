"""
Service layer helpers that orchestrate the store and domain logic.
"""

from .booking import BookingService
from .ratings import RatingFetcher, RatingsRefreshJob
from .repository import SchedulerRepository
from .statistics import StatisticsRecorder
from .store import KeyValueStore

__all__ = [
    "BookingService",
    "KeyValueStore",
    "RatingFetcher",
    "RatingsRefreshJob",
    "SchedulerRepository",
    "StatisticsRecorder",
]
