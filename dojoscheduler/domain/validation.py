"""
Eligibility checks run by the caller before a booking is attempted.

The booking protocol trusts its inputs; anything rejected here must be
rejected before ``BookingService.book_availability`` is called.
"""

from typing import Iterable, Optional

from .exceptions import InvalidRequestError
from .models import Availability, MeetingRequest, STATISTICS_KEY


def validate_booking(availability: Availability, request: MeetingRequest) -> None:
    """
    Ensure ``request`` may book ``availability``.

    Raises:
        InvalidRequestError: If the meeting id is blank or reserved, the
            participant owns the slot or asks for a type the slot does not
            offer, or the participant is not in an eligible cohort.
    """
    if request.id is not None and (not request.id.strip() or request.id == STATISTICS_KEY):
        raise InvalidRequestError(f"Invalid request: meeting id `{request.id}` is not allowed")

    if request.participant == availability.owner:
        raise InvalidRequestError("Invalid request: you cannot book your own availability")

    if request.type not in availability.types:
        raise InvalidRequestError(
            f"Invalid request: availability does not offer type `{request.type}`"
        )

    if request.participant_cohort not in availability.cohorts:
        raise InvalidRequestError(
            f"Invalid request: cohort `{request.participant_cohort}` cannot book this availability"
        )


def validate_vocabulary(
    availability: Availability,
    cohorts: Optional[Iterable[str]] = None,
    types: Optional[Iterable[str]] = None,
) -> None:
    """
    Ensure every tag on ``availability`` belongs to the known vocabulary.

    Statistics buckets are pre-seeded from the vocabulary, so an unknown tag
    would make the statistics update fail later.
    """
    if availability.owner == STATISTICS_KEY or availability.id == STATISTICS_KEY:
        raise InvalidRequestError(f"Invalid request: `{STATISTICS_KEY}` is a reserved key")

    if cohorts is not None:
        known = set(cohorts)
        unknown = [c for c in [availability.owner_cohort, *availability.cohorts] if c not in known]
        if unknown:
            raise InvalidRequestError(f"Invalid request: unknown cohort(s) {', '.join(unknown)}")

    if types is not None:
        known = set(types)
        unknown = [t for t in availability.types if t not in known]
        if unknown:
            raise InvalidRequestError(f"Invalid request: unknown type(s) {', '.join(unknown)}")
