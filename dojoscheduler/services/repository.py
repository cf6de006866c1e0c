"""
Typed CRUD over users, availabilities, meetings and their aggregates.

The repository owns the item layout (key shapes, required attributes) and
turns store-level conflicts into errors that say what actually happened.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Type, TypeVar

import pendulum
from pydantic import ValidationError

from ..config import TableNames
from ..domain.exceptions import ConflictError, InvalidRequestError, NotFoundError, TransientStoreError
from ..domain.expressions import Condition, CounterUpdate
from ..domain.models import (
    STATISTICS_KEY,
    Availability,
    AvailabilityStats,
    Meeting,
    MeetingStats,
    MeetingStatus,
    StoredModel,
    User,
)
from .store import Item, KeyValueStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=StoredModel)

AVAILABILITY_STATS_KEY = {"owner": STATISTICS_KEY, "id": STATISTICS_KEY}
MEETING_STATS_KEY = {"id": STATISTICS_KEY}


def _now() -> str:
    return pendulum.now("UTC").to_iso8601_string()


def _unmarshal(model: Type[M], item: Item, label: str) -> M:
    try:
        return model.from_item(item)
    except ValidationError as exc:
        raise TransientStoreError(f"Failed to unmarshal {label}: {exc}") from exc


def _is_statistics_key(*values: str) -> bool:
    return STATISTICS_KEY in values


class SchedulerRepository:
    """Entity repository on top of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, tables: TableNames) -> None:
        self.store = store
        self.tables = tables

    # ---- Users -------------------------------------------------------------

    def create_user(self, username: str, email: str, name: str) -> User:
        """
        Create a new user. The first write wins.

        Raises:
            ConflictError: If a user with this username already exists
        """
        now = _now()
        user = User(username=username, email=email, name=name, created_at=now, updated_at=now)
        try:
            self.store.put(self.tables.users, user.to_item(), Condition.not_exists("username"))
        except ConflictError as exc:
            raise ConflictError(
                "Invalid request: user already exists",
                f"CreateUser conditional check failed for {username}",
            ) from exc
        return user

    def set_user(self, user: User) -> None:
        """Save ``user`` unconditionally."""
        user.updated_at = _now()
        self.store.put(self.tables.users, user.to_item())

    def get_user(self, username: str) -> User:
        item = self.store.get(self.tables.users, {"username": username})
        if item is None:
            raise NotFoundError("Invalid request: user not found", f"GetUser {username} returned no item")
        return _unmarshal(User, item, "user")

    def scan_users(self, start_key: Optional[Dict[str, str]] = None, limit: Optional[int] = None) -> Tuple[List[User], Optional[Dict[str, str]]]:
        """Return one page of users and the key to continue from."""
        items, last_key = self.store.scan(self.tables.users, start_key=start_key, limit=limit)
        users = [_unmarshal(User, item, "user") for item in items]
        return users, last_key

    def update_user_ratings(self, users: Sequence[User]) -> None:
        """Write back users whose ratings changed."""
        now = _now()
        for user in users:
            user.updated_at = now
        self.store.batch_put(self.tables.users, [user.to_item() for user in users])

    # ---- Availabilities ----------------------------------------------------

    def set_availability(self, availability: Availability) -> None:
        """Insert ``availability``."""
        if _is_statistics_key(availability.owner, availability.id):
            raise InvalidRequestError(f"Invalid request: `{STATISTICS_KEY}` is a reserved key")
        self.store.put(self.tables.availabilities, availability.to_item())

    def get_availability(self, owner: str, availability_id: str) -> Availability:
        """
        Return the availability with the provided owner and id.

        Raises:
            NotFoundError: If the availability does not exist (it may have
                been booked or deleted already)
        """
        item = None
        if not _is_statistics_key(owner, availability_id):
            item = self.store.get(self.tables.availabilities, {"owner": owner, "id": availability_id})
        if item is None:
            raise NotFoundError(
                "Invalid request: availability not found or already booked",
                f"GetAvailability ({owner}, {availability_id}) returned no item",
            )
        return _unmarshal(Availability, item, "availability")

    def delete_availability(self, owner: str, availability_id: str) -> None:
        """
        Delete the availability, which must currently exist.

        This conditional delete is the only point where concurrent bookings
        and deletions of the same slot are decided.

        Raises:
            ConflictError: If the availability does not exist or is already booked
        """
        if _is_statistics_key(owner, availability_id):
            raise ConflictError("Invalid request: availability does not exist or is already booked")

        try:
            self.store.delete(
                self.tables.availabilities,
                {"owner": owner, "id": availability_id},
                Condition.exists("id"),
            )
        except ConflictError as exc:
            logger.info("Availability (%s, %s) was already removed", owner, availability_id)
            raise ConflictError(
                "Invalid request: availability does not exist or is already booked",
                f"DeleteAvailability ({owner}, {availability_id}) conditional check failed",
            ) from exc

    # ---- Meetings ----------------------------------------------------------

    def set_meeting(self, meeting: Meeting) -> None:
        """
        Insert ``meeting``. An existing meeting is never overwritten.

        Raises:
            ConflictError: If a meeting with this id already exists
        """
        if _is_statistics_key(meeting.id):
            raise InvalidRequestError(f"Invalid request: `{STATISTICS_KEY}` is a reserved key")
        try:
            self.store.put(self.tables.meetings, meeting.to_item(), Condition.not_exists("id"))
        except ConflictError as exc:
            raise ConflictError(
                "Invalid request: meeting already exists",
                f"SetMeeting {meeting.id} conditional check failed",
            ) from exc

    def meeting_exists(self, meeting_id: str) -> bool:
        return self.store.get(self.tables.meetings, {"id": meeting_id}) is not None

    def get_meeting(self, meeting_id: str) -> Meeting:
        item = None
        if not _is_statistics_key(meeting_id):
            item = self.store.get(self.tables.meetings, {"id": meeting_id})
        if item is None:
            raise NotFoundError("Invalid request: meeting not found", f"GetMeeting {meeting_id} returned no item")
        return _unmarshal(Meeting, item, "meeting")

    def cancel_meeting(self, meeting_id: str, canceler: str) -> Meeting:
        """
        Mark the meeting as canceled by ``canceler``.

        Raises:
            NotFoundError: If the meeting does not exist
            ConflictError: If the meeting was already canceled or disappeared
                between the read and the write
        """
        meeting = self.get_meeting(meeting_id)
        if meeting.status == MeetingStatus.CANCELED:
            raise ConflictError("Invalid request: meeting is already canceled", f"Meeting {meeting_id}")

        meeting.status = MeetingStatus.CANCELED
        meeting.canceler = canceler
        try:
            self.store.put(self.tables.meetings, meeting.to_item(), Condition.exists("id"))
        except ConflictError as exc:
            raise ConflictError(
                "Invalid request: meeting not found",
                f"CancelMeeting {meeting_id} conditional check failed",
            ) from exc
        return meeting

    # ---- Statistics --------------------------------------------------------

    def increment_availability_stats(self, update: CounterUpdate) -> None:
        self.store.increment(self.tables.availabilities, AVAILABILITY_STATS_KEY, update)

    def increment_meeting_stats(self, update: CounterUpdate) -> None:
        self.store.increment(self.tables.meetings, MEETING_STATS_KEY, update)

    def get_availability_stats(self) -> AvailabilityStats:
        item = self.store.get(self.tables.availabilities, AVAILABILITY_STATS_KEY)
        if item is None:
            return AvailabilityStats()
        return _unmarshal(AvailabilityStats, item, "availability statistics")

    def get_meeting_stats(self) -> MeetingStats:
        item = self.store.get(self.tables.meetings, MEETING_STATS_KEY)
        if item is None:
            return MeetingStats()
        return _unmarshal(MeetingStats, item, "meeting statistics")

    def create_availability_stats(self, stats: AvailabilityStats) -> bool:
        """Write ``stats`` unless the record exists. Returns True if written."""
        item = {**stats.to_item(), **AVAILABILITY_STATS_KEY}
        return self._put_if_absent(self.tables.availabilities, item, "id")

    def create_meeting_stats(self, stats: MeetingStats) -> bool:
        """Write ``stats`` unless the record exists. Returns True if written."""
        item = {**stats.to_item(), **MEETING_STATS_KEY}
        return self._put_if_absent(self.tables.meetings, item, "id")

    def _put_if_absent(self, table: str, item: Item, attribute: str) -> bool:
        try:
            self.store.put(table, item, Condition.not_exists(attribute))
        except ConflictError:
            logger.info("Statistics record in %s already exists", table)
            return False
        return True
