"""
Tests for the ratings refresh job.
"""

import pytest

from dojoscheduler.domain.exceptions import TransientStoreError
from dojoscheduler.domain.models import User
from dojoscheduler.services.ratings import RatingsRefreshJob


def _add_user(repository, username, **fields):
    repository.create_user(username, f"{username}@example.com", username.title())
    user = repository.get_user(username)
    for name, value in fields.items():
        setattr(user, name, value)
    repository.set_user(user)


@pytest.fixture
def batches(repository, monkeypatch):
    """Records the size of every batch written back."""
    sizes = []
    original = repository.update_user_ratings

    def spy(users):
        sizes.append(len(users))
        original(users)

    monkeypatch.setattr(repository, "update_user_ratings", spy)
    return sizes


class TestRatingsRefreshJob:
    """Tests for RatingsRefreshJob."""

    def test_changed_users_are_written_in_batches(self, repository, batches):
        for i in range(30):
            _add_user(repository, f"user{i:02d}", lichess_username=f"lichess{i:02d}")

        job = RatingsRefreshJob(repository, {"lichess": lambda account: 1500}, page_size=7)
        summary = job.run()

        assert summary.scanned == 30
        assert summary.changed == 30
        assert summary.written == 30
        assert batches == [25, 5]
        assert repository.get_user("user29").current_lichess_rating == 1500

    def test_unchanged_users_are_not_written(self, repository, batches):
        _add_user(repository, "alice", fide_id="123", current_fide_rating=2000)
        _add_user(repository, "bob", fide_id="456", current_fide_rating=1800)
        _add_user(repository, "carol")

        summary = RatingsRefreshJob(repository, {"fide": lambda account: 2000}).run()

        assert summary.scanned == 3
        assert summary.changed == 1
        assert batches == [1]
        assert repository.get_user("bob").current_fide_rating == 2000

    def test_failed_lookup_keeps_last_rating(self, repository, caplog):
        _add_user(
            repository,
            "alice",
            chesscom_username="alice_c",
            lichess_username="alice_l",
            current_chesscom_rating=1400,
        )

        def broken(account):
            raise ConnectionError("site down")

        summary = RatingsRefreshJob(repository, {"chesscom": broken, "lichess": lambda account: 1700}).run()

        user = repository.get_user("alice")
        assert user.current_chesscom_rating == 1400
        assert user.current_lichess_rating == 1700
        assert summary.changed == 1
        assert "Failed to get chesscom rating" in caplog.text

    def test_blank_accounts_are_skipped(self):
        calls = []

        def fetch(account):
            calls.append(account)
            return 1000

        job = RatingsRefreshJob(repository=None, fetchers={"uscf": fetch, "ecf": fetch})
        user = User(username="alice", uscf_id="  ", ecf_id="E1")

        assert job.refresh_user(user) is True
        assert calls == ["E1"]
        assert user.current_ecf_rating == 1000
        assert user.current_uscf_rating == 0

    def test_failed_batch_is_counted(self, repository, monkeypatch):
        _add_user(repository, "alice", lichess_username="alice")

        def broken(users):
            raise TransientStoreError("BatchWriteItem failed")

        monkeypatch.setattr(repository, "update_user_ratings", broken)
        summary = RatingsRefreshJob(repository, {"lichess": lambda account: 1900}).run()

        assert summary.changed == 1
        assert summary.written == 0
        assert summary.failed_batches == 1

    def test_scan_failure_propagates(self, repository, monkeypatch):
        def broken(start_key=None, limit=None):
            raise TransientStoreError("DynamoDB Scan failure")

        monkeypatch.setattr(repository, "scan_users", broken)

        with pytest.raises(TransientStoreError):
            RatingsRefreshJob(repository, {}).run()

    def test_unknown_rating_system(self, repository):
        with pytest.raises(ValueError, match="Unknown rating system"):
            RatingsRefreshJob(repository, {"chess24": lambda account: 0})
