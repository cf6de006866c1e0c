"""
Tests for BookingService and the booking eligibility checks.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import pytest

from dojoscheduler.domain.exceptions import ConflictError, InvalidRequestError, NotFoundError
from dojoscheduler.domain.models import MeetingRequest, MeetingStatus
from dojoscheduler.domain.validation import validate_booking, validate_vocabulary
from dojoscheduler.services.booking import BookingService

from conftest import COHORTS, TYPES


def _bob(**overrides) -> MeetingRequest:
    fields = {"participant": "bob", "participant_cohort": "1400-1600", "type": "ENDGAME"}
    fields.update(overrides)
    return MeetingRequest(**fields)


class TestBooking:
    """The delete-then-insert booking protocol."""

    def test_book_availability(self, service, repository, make_availability):
        availability = service.create_availability(make_availability())
        booked_before = repository.get_availability_stats().booked

        meeting = service.book_availability(availability, _bob())

        with pytest.raises(NotFoundError):
            repository.get_availability("alice", "42")
        stored = repository.get_meeting(meeting.id)
        assert stored.owner == "alice"
        assert stored.participant == "bob"
        assert stored.type == "ENDGAME"
        assert stored.availability_id == "42"
        assert stored.status == MeetingStatus.SCHEDULED

        assert repository.get_availability_stats().booked == booked_before + 1
        meeting_stats = repository.get_meeting_stats()
        assert meeting_stats.created == 1
        assert meeting_stats.participant_cohorts["1400-1600"] == 1
        assert meeting_stats.owner_cohorts["1200-1400"] == 1

    def test_second_booking_is_a_conflict(self, service, repository, make_availability):
        availability = service.create_availability(make_availability())
        service.book_availability(availability, _bob())

        with pytest.raises(ConflictError) as exc_info:
            service.book_availability(availability, _bob(participant="carol"))

        assert "(alice, 42)" in exc_info.value.private_message
        assert repository.get_meeting_stats().created == 1

    def test_at_most_one_concurrent_booking_wins(self, service, repository, store, tables, make_availability):
        """Many simultaneous bookings of one slot produce exactly one meeting."""
        availability = service.create_availability(make_availability())
        workers = 20
        barrier = threading.Barrier(workers)

        def attempt(index):
            barrier.wait()
            try:
                return service.book_availability(availability, _bob(participant=f"player{index}"))
            except ConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        meetings = [r for r in results if not isinstance(r, ConflictError)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(meetings) == 1
        assert len(conflicts) == workers - 1
        assert all("(alice, 42)" in c.private_message for c in conflicts)

        stored, _ = store.scan(tables.meetings)
        assert [m["id"] for m in stored if m["id"] != "STATISTICS"] == [meetings[0].id]
        assert store.get(tables.availabilities, {"owner": "alice", "id": "42"}) is None
        assert repository.get_availability_stats().booked == 1

    def test_taken_meeting_id_does_not_consume_the_slot(self, service, repository, make_availability):
        first = service.create_availability(make_availability(id="1"))
        second = service.create_availability(make_availability(id="2"))
        service.book_availability(first, _bob(id="m"))

        with pytest.raises(ConflictError, match="meeting already exists"):
            service.book_availability(second, _bob(participant="carol", id="m"))

        meeting = repository.get_meeting("m")
        assert meeting.participant == "bob"
        assert meeting.availability_id == "1"
        assert repository.get_availability("alice", "2") == second

    def test_reserved_meeting_id_does_not_consume_the_slot(self, service, repository, make_availability):
        availability = service.create_availability(make_availability())

        with pytest.raises(InvalidRequestError, match="reserved"):
            service.book_availability(availability, _bob(id="STATISTICS"))

        assert repository.get_availability("alice", "42") == availability

    def test_booked_slot_is_not_resurrected(self, service, repository, make_availability):
        availability = service.create_availability(make_availability())
        service.book_availability(availability, _bob())

        with pytest.raises(ConflictError):
            service.book_availability(availability, _bob(participant="dave"))
        with pytest.raises(NotFoundError):
            service.delete_availability("alice", "42")
        with pytest.raises(NotFoundError):
            repository.get_availability("alice", "42")


class TestBestEffortStatistics:
    """Statistics failures never affect the primary mutation."""

    def test_inline_failure_is_logged(self, service, repository, statistics, make_availability, monkeypatch, caplog):
        def broken(meeting):
            raise RuntimeError("statistics store down")

        monkeypatch.setattr(statistics, "record_meeting_creation", broken)
        availability = service.create_availability(make_availability())

        with caplog.at_level(logging.ERROR, logger="dojoscheduler"):
            meeting = service.book_availability(availability, _bob())

        assert repository.get_meeting(meeting.id).participant == "bob"
        with pytest.raises(NotFoundError):
            repository.get_availability("alice", "42")
        assert "Failed RecordMeetingCreation" in caplog.text

    def test_unknown_tag_does_not_fail_creation(self, service, repository, make_availability, caplog):
        with caplog.at_level(logging.ERROR, logger="dojoscheduler"):
            service.create_availability(make_availability(types=["BLINDFOLD"]))

        assert repository.get_availability("alice", "42").types == ["BLINDFOLD"]
        assert repository.get_availability_stats().created == 0
        assert "Failed RecordAvailabilityCreation" in caplog.text

    def test_background_updates(self, repository, statistics, make_availability):
        with BookingService.with_background_statistics(repository, statistics, max_workers=2) as service:
            availability = service.create_availability(make_availability())
            service.book_availability(availability, _bob())

        assert repository.get_availability_stats().created == 1
        assert repository.get_availability_stats().booked == 1
        assert repository.get_meeting_stats().created == 1

    def test_background_failure_is_logged(self, repository, statistics, make_availability, monkeypatch, caplog):
        def broken(meeting):
            raise RuntimeError("statistics store down")

        monkeypatch.setattr(statistics, "record_meeting_creation", broken)
        executor = ThreadPoolExecutor(max_workers=1)
        service = BookingService(repository, statistics, executor)

        with caplog.at_level(logging.ERROR, logger="dojoscheduler"):
            availability = service.create_availability(make_availability())
            meeting = service.book_availability(availability, _bob())
            executor.shutdown(wait=True)

        assert repository.get_meeting(meeting.id).participant == "bob"
        with pytest.raises(NotFoundError):
            repository.get_availability("alice", "42")
        assert "Failed RecordMeetingCreation" in caplog.text


    def test_canceled_update_is_logged(self, repository, statistics, make_availability, caplog):
        class CancelingExecutor:
            def submit(self, func, *args):
                future = Future()
                future.cancel()
                return future

        service = BookingService(repository, statistics, CancelingExecutor())

        with caplog.at_level(logging.WARNING, logger="dojoscheduler"):
            service.create_availability(make_availability())

        assert repository.get_availability("alice", "42").owner == "alice"
        assert "Canceled RecordAvailabilityCreation" in caplog.text


class TestLifecycle:
    """Deleting availabilities and canceling meetings."""

    def test_delete_availability(self, service, repository, make_availability):
        service.create_availability(make_availability())

        service.delete_availability("alice", "42")

        with pytest.raises(NotFoundError):
            repository.get_availability("alice", "42")
        stats = repository.get_availability_stats()
        assert stats.deleted == 1
        assert stats.deleter_cohorts["1200-1400"] == 1

    def test_delete_missing_availability(self, service):
        with pytest.raises(NotFoundError):
            service.delete_availability("alice", "missing")

    def test_cancel_meeting(self, service, repository, make_availability):
        availability = service.create_availability(make_availability())
        meeting = service.book_availability(availability, _bob())

        canceled = service.cancel_meeting(meeting.id, "bob", "1400-1600")

        assert canceled.status == MeetingStatus.CANCELED
        stats = repository.get_meeting_stats()
        assert stats.canceled == 1
        assert stats.canceler_cohorts["1400-1600"] == 1

        with pytest.raises(ConflictError):
            service.cancel_meeting(meeting.id, "alice", "1200-1400")
        assert repository.get_meeting_stats().canceled == 1


class TestValidation:
    """Checks run before a booking is attempted."""

    def test_valid_request(self, make_availability):
        validate_booking(make_availability(), _bob())

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"participant": "alice"}, "your own availability"),
            ({"type": "MIDDLEGAME"}, "does not offer type"),
            ({"participant_cohort": "1600-1800"}, "cannot book"),
            ({"id": "STATISTICS"}, "not allowed"),
            ({"id": "  "}, "not allowed"),
        ],
    )
    def test_invalid_requests(self, make_availability, overrides, message):
        with pytest.raises(InvalidRequestError, match=message):
            validate_booking(make_availability(), _bob(**overrides))

    def test_vocabulary(self, make_availability):
        validate_vocabulary(make_availability(), COHORTS, TYPES)

        with pytest.raises(InvalidRequestError, match="unknown type"):
            validate_vocabulary(make_availability(types=["BLINDFOLD"]), COHORTS, TYPES)
        with pytest.raises(InvalidRequestError, match="unknown cohort"):
            validate_vocabulary(make_availability(owner_cohort="2400+"), COHORTS, TYPES)
        with pytest.raises(InvalidRequestError, match="reserved"):
            validate_vocabulary(make_availability(id="STATISTICS"))
