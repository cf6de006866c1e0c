"""
Periodic job that refreshes the ratings stored on every user.

Rating lookups are delegated to injected fetchers, one per rating system.
A failed lookup keeps the last known rating; only users whose ratings
actually changed are written back, in batches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol

from ..domain.exceptions import SchedulerError
from ..domain.models import User
from .repository import SchedulerRepository

logger = logging.getLogger(__name__)

BATCH_SIZE = 25

# Rating system -> (account attribute, rating attribute) on User.
RATING_SYSTEMS: Dict[str, tuple[str, str]] = {
    "chesscom": ("chesscom_username", "current_chesscom_rating"),
    "lichess": ("lichess_username", "current_lichess_rating"),
    "fide": ("fide_id", "current_fide_rating"),
    "uscf": ("uscf_id", "current_uscf_rating"),
    "ecf": ("ecf_id", "current_ecf_rating"),
}


class RatingFetcher(Protocol):
    """Looks up the current rating of one account on one rating site."""

    def __call__(self, account: str) -> int:
        """Return the rating, raising on any failure."""


@dataclass
class RefreshSummary:
    scanned: int = 0
    changed: int = 0
    written: int = 0
    failed_batches: int = 0


class RatingsRefreshJob:
    """Scans all users and refreshes their ratings."""

    def __init__(
        self,
        repository: SchedulerRepository,
        fetchers: Mapping[str, RatingFetcher],
        page_size: Optional[int] = None,
    ) -> None:
        unknown = set(fetchers) - set(RATING_SYSTEMS)
        if unknown:
            raise ValueError(f"Unknown rating system(s): {', '.join(sorted(unknown))}")
        self._repository = repository
        self._fetchers = dict(fetchers)
        self._page_size = page_size

    def run(self) -> RefreshSummary:
        """
        Refresh every user.

        Raises:
            SchedulerError: If scanning the users table fails
        """
        summary = RefreshSummary()
        pending: List[User] = []
        start_key = None

        while True:
            try:
                users, start_key = self._repository.scan_users(start_key, limit=self._page_size)
            except SchedulerError:
                logger.error("Failed to scan users", exc_info=True)
                raise

            for user in users:
                summary.scanned += 1
                if self.refresh_user(user):
                    summary.changed += 1
                    pending.append(user)
                if len(pending) == BATCH_SIZE:
                    self._flush(pending, summary)
                    pending = []

            if start_key is None:
                break

        if pending:
            self._flush(pending, summary)
        return summary

    def refresh_user(self, user: User) -> bool:
        """Update ``user`` in place. Returns True if any rating changed."""
        changed = False
        for system, (account_attr, rating_attr) in RATING_SYSTEMS.items():
            account = (getattr(user, account_attr) or "").strip()
            fetcher = self._fetchers.get(system)
            if not account or fetcher is None:
                continue

            try:
                rating = fetcher(account)
            except Exception as exc:
                logger.error("Failed to get %s rating for %r: %s", system, account, exc)
                continue

            if rating != getattr(user, rating_attr):
                setattr(user, rating_attr, rating)
                changed = True
        return changed

    def _flush(self, users: List[User], summary: RefreshSummary) -> None:
        try:
            self._repository.update_user_ratings(users)
        except SchedulerError as exc:
            summary.failed_batches += 1
            logger.error("Failed to update %d users: %s", len(users), exc)
            return
        summary.written += len(users)
        logger.debug("Updated %d users", len(users))
