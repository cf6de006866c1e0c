"""
Domain layer - Entities, errors and update builders without external I/O.
"""

from .exceptions import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    SchedulerError,
    TransientStoreError,
)
from .expressions import Condition, CounterUpdate
from .models import (
    STATISTICS_KEY,
    Availability,
    AvailabilityStats,
    Meeting,
    MeetingRequest,
    MeetingStats,
    MeetingStatus,
    TimeRange,
    User,
)

__all__ = [
    "STATISTICS_KEY",
    "Availability",
    "AvailabilityStats",
    "Condition",
    "ConflictError",
    "CounterUpdate",
    "InvalidRequestError",
    "Meeting",
    "MeetingRequest",
    "MeetingStats",
    "MeetingStatus",
    "NotFoundError",
    "SchedulerError",
    "TimeRange",
    "TransientStoreError",
    "User",
]
