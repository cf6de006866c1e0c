"""
Application service that turns availabilities into meetings.

The store has no multi-item transactions, so a booking is a
delete-then-insert sequence:

1. Delete the availability with an "item must exist" condition. The store
   lets exactly one of several concurrent deletes succeed; every other
   caller gets a ConflictError.
2. Save the meeting.

A crash between 1 and 2 loses the slot without recording a meeting. The
order means the failure mode is a lost slot, never a double booking.

Statistics updates run after the primary mutation and are best effort:
their failures are logged and never reach the caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from ..domain.exceptions import ConflictError, InvalidRequestError
from ..domain.models import STATISTICS_KEY, Availability, Meeting, MeetingRequest
from .repository import SchedulerRepository
from .statistics import StatisticsRecorder

logger = logging.getLogger(__name__)


class BookingService:
    """
    Orchestrates the availability lifecycle and its statistics.

    Pass an ``executor`` to run statistics updates in the background; without
    one they run inline after the primary mutation.
    """

    def __init__(
        self,
        repository: SchedulerRepository,
        statistics: StatisticsRecorder,
        executor: Optional[Executor] = None,
    ) -> None:
        self._repository = repository
        self._statistics = statistics
        self._executor = executor
        self._owns_executor = False

    @classmethod
    def with_background_statistics(
        cls,
        repository: SchedulerRepository,
        statistics: StatisticsRecorder,
        max_workers: int = 4,
    ) -> "BookingService":
        """Build a service that owns a thread pool for statistics updates."""
        service = cls(
            repository,
            statistics,
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="statistics"),
        )
        service._owns_executor = True
        return service

    def close(self) -> None:
        """Wait for pending statistics updates and release an owned executor."""
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "BookingService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ---- Operations --------------------------------------------------------

    def create_availability(self, availability: Availability) -> Availability:
        """Publish ``availability`` and record the creation."""
        self._repository.set_availability(availability)
        self._record_best_effort(
            "RecordAvailabilityCreation",
            self._statistics.record_availability_creation,
            availability,
        )
        return availability

    def book_availability(self, availability: Availability, request: MeetingRequest) -> Meeting:
        """
        Convert ``availability`` into a meeting for ``request``.

        ``request`` must already have been validated against the availability
        (see ``domain.validation.validate_booking``). Nothing is retried: on a
        conflict the slot is gone and the caller has to pick another one.

        Raises:
            InvalidRequestError: If the requested meeting id is reserved
            ConflictError: If the availability was already booked or deleted,
                or the requested meeting id is taken
            TransientStoreError: If the store failed
        """
        if request.id is not None:
            # Checked before the delete below.
            if request.id == STATISTICS_KEY:
                raise InvalidRequestError(f"Invalid request: `{STATISTICS_KEY}` is a reserved key")
            if self._repository.meeting_exists(request.id):
                raise ConflictError(
                    "Invalid request: meeting already exists",
                    f"BookAvailability meeting id {request.id} is taken",
                )

        # First delete the availability to make sure nobody else can book it.
        self._repository.delete_availability(availability.owner, availability.id)

        # Only one caller per availability gets here.
        meeting = Meeting.from_booking(availability, request)
        try:
            self._repository.set_meeting(meeting)
        except Exception:
            logger.error(
                "Availability (%s, %s) was deleted but meeting %s could not be saved",
                availability.owner,
                availability.id,
                meeting.id,
            )
            raise

        logger.info(
            "Booked availability (%s, %s) as meeting %s for %s",
            availability.owner,
            availability.id,
            meeting.id,
            request.participant,
        )
        self._record_best_effort("RecordMeetingCreation", self._statistics.record_meeting_creation, meeting)
        return meeting

    def delete_availability(self, owner: str, availability_id: str, deleter_cohort: Optional[str] = None) -> None:
        """
        Delete an availability on behalf of its owner.

        The record is read first so the deletion statistics know the owner
        cohort. A slot that vanishes between the read and the delete raises
        the same ConflictError as a lost booking race.

        Raises:
            NotFoundError: If the availability does not exist
            ConflictError: If it was removed after it was read
        """
        availability = self._repository.get_availability(owner, availability_id)
        self._repository.delete_availability(owner, availability_id)
        self._record_best_effort(
            "RecordAvailabilityDeletion",
            self._statistics.record_availability_deletion,
            availability,
            deleter_cohort,
        )

    def cancel_meeting(self, meeting_id: str, canceler: str, canceler_cohort: str) -> Meeting:
        """Cancel a meeting and record the cancellation."""
        meeting = self._repository.cancel_meeting(meeting_id, canceler)
        self._record_best_effort(
            "RecordMeetingCancellation",
            self._statistics.record_meeting_cancellation,
            meeting,
            canceler_cohort,
        )
        return meeting

    # ---- Best effort -------------------------------------------------------

    def _record_best_effort(self, name: str, func: Callable[..., None], *args: Any) -> Optional[Future]:
        """
        Run a statistics update without letting it fail the caller.

        Returns the Future when the update was handed to the executor.
        """
        if self._executor is None:
            try:
                func(*args)
            except Exception:
                # Only log this error as this happens on best effort
                logger.exception("Failed %s", name)
            return None

        try:
            future = self._executor.submit(func, *args)
        except RuntimeError:
            logger.exception("Failed to schedule %s", name)
            return None

        def _log_failure(done: Future) -> None:
            if done.cancelled():
                logger.warning("Canceled %s", name)
                return
            exc = done.exception()
            if exc is not None:
                logger.error("Failed %s", name, exc_info=exc)

        future.add_done_callback(_log_failure)
        return future
