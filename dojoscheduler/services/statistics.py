"""
Statistics aggregation engine.

Every lifecycle event is recorded with one atomic increment per aggregate
record: the scalar counter and all of its bucket counters move together or
not at all. Buckets are keyed by cohort and slot-type tags that are only
known at run time, so the increments are built with ``CounterUpdate``,
which keeps those tags out of the update expression itself.

These updates are best effort. Callers log failures and never let them
affect the entity mutation that triggered them.
"""

from __future__ import annotations

import logging
from typing import Dict, Sequence

from ..domain.expressions import CounterUpdate
from ..domain.models import Availability, AvailabilityStats, Meeting, MeetingStats
from .repository import SchedulerRepository

logger = logging.getLogger(__name__)


class StatisticsRecorder:
    """
    Maintains the availability and meeting aggregates.

    ``create_missing`` switches bucket increments to add-on-absent
    semantics, so a tag missing from a seeded bucket map starts at zero
    instead of failing the update. The bucket maps themselves must exist.
    """

    def __init__(self, repository: SchedulerRepository, create_missing: bool = False) -> None:
        self._repository = repository
        self._create_missing = create_missing

    def _update(self) -> CounterUpdate:
        return CounterUpdate(create_missing=self._create_missing)

    def record_availability_creation(self, availability: Availability) -> None:
        """Saves statistics on the created availability."""
        self.record_availability_creations([availability])

    def record_availability_creations(self, availabilities: Sequence[Availability]) -> None:
        """
        Saves statistics on several created availabilities in one request.

        Each availability adds one to ``created``, its owner cohort, every
        cohort that can book it and every type it offers.
        """
        if not availabilities:
            return

        update = self._update().add_scalar("created", len(availabilities))
        for availability in availabilities:
            update.add_bucket("ownerCohorts", availability.owner_cohort)
            update.add_buckets("bookableCohorts", availability.cohorts)
            update.add_buckets("types", availability.types)

        self._repository.increment_availability_stats(update)

    def record_availability_deletion(self, availability: Availability, deleter_cohort: str | None = None) -> None:
        """Saves statistics on the deleted availability."""
        update = (
            self._update()
            .add_scalar("deleted")
            .add_bucket("deleterCohorts", deleter_cohort or availability.owner_cohort)
        )
        self._repository.increment_availability_stats(update)

    def record_meeting_creation(self, meeting: Meeting) -> None:
        """
        Saves statistics on the created meeting.

        Two requests: ``booked`` on the availability aggregate, then the
        meeting aggregate. They are independent; the first may succeed while
        the second fails.
        """
        self._repository.increment_availability_stats(self._update().add_scalar("booked"))

        update = (
            self._update()
            .add_scalar("created")
            .add_bucket("ownerCohorts", meeting.owner_cohort)
            .add_bucket("participantCohorts", meeting.participant_cohort)
            .add_bucket("types", meeting.type)
        )
        self._repository.increment_meeting_stats(update)

    def record_meeting_cancellation(self, meeting: Meeting, canceler_cohort: str) -> None:
        """Saves statistics on the canceled meeting."""
        update = self._update().add_scalar("canceled").add_bucket("cancelerCohorts", canceler_cohort)
        self._repository.increment_meeting_stats(update)

    def seed(self, cohorts: Sequence[str], types: Sequence[str]) -> Dict[str, bool]:
        """
        Create both aggregate records with every known bucket key at zero.

        Existing records are left untouched, so seeding is safe to repeat.
        It does not add new keys to an existing record.

        Returns:
            Record name -> whether it was created by this call
        """
        created = {
            "availability": self._repository.create_availability_stats(
                AvailabilityStats.seeded(list(cohorts), list(types))
            ),
            "meeting": self._repository.create_meeting_stats(
                MeetingStats.seeded(list(cohorts), list(types))
            ),
        }
        logger.info("Seeded statistics records: %s", created)
        return created
