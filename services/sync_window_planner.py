"""Per-account transaction window planning.

Decides which ``[start, end]`` range to request from a provider:

- explicit dates from the caller win (manual backfill)
- an account that never synced gets the default lookback
- an account synced within the minimum interval is skipped unless forced
- otherwise the window restarts at ``last_synced_at`` minus a small overlap,
  so transactions that arrive late or are edited after posting are fetched
  again (the upsert makes the overlap harmless)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from config import settings
from integrations.parsing_utils import ensure_utc


@dataclass
class SyncWindow:
    """A planned fetch window, or a skip decision."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    skip: bool = False
    reason: str = ""

    @property
    def days(self) -> float:
        if self.start_date is None or self.end_date is None:
            return 0.0
        return (self.end_date - self.start_date).total_seconds() / 86400


class SyncWindowPlanner:
    """Compute transaction fetch windows for accounts."""

    def __init__(
        self,
        default_days_back: int | None = None,
        overlap: timedelta | None = None,
        min_interval: timedelta | None = None,
    ):
        self.default_days_back = (
            settings.SYNC_DEFAULT_DAYS_BACK if default_days_back is None else default_days_back
        )
        self.overlap = (
            timedelta(hours=settings.SYNC_OVERLAP_HOURS) if overlap is None else overlap
        )
        self.min_interval = (
            timedelta(minutes=settings.SYNC_MIN_INTERVAL_MINUTES)
            if min_interval is None
            else min_interval
        )

    def plan(
        self,
        last_synced_at: datetime | None,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        days_back: int | None = None,
        force: bool = False,
        now: datetime | None = None,
    ) -> SyncWindow:
        """Plan the window for one account.

        Args:
            last_synced_at: When the account's transactions were last synced.
            start_date: Explicit start supplied by the caller.
            end_date: Explicit end supplied by the caller.
            days_back: Lookback for never-synced accounts (defaults to the planner's).
            force: Ignore the minimum interval.
            now: Clock override for tests.

        Returns:
            SyncWindow; ``skip`` is True when the account synced too recently.
        """
        now = ensure_utc(now) if now else datetime.now(timezone.utc)

        if start_date is not None or end_date is not None:
            end = ensure_utc(end_date) if end_date else now
            lookback = self.default_days_back if days_back is None else days_back
            start = ensure_utc(start_date) if start_date else end - timedelta(days=lookback)
            return self._bounded(start, end, "explicit dates")

        if last_synced_at is None:
            lookback = self.default_days_back if days_back is None else days_back
            return self._bounded(now - timedelta(days=lookback), now, "initial backfill")

        last = ensure_utc(last_synced_at)
        if not force and now - last < self.min_interval:
            return SyncWindow(skip=True, reason="synced recently")

        return self._bounded(last - self.overlap, now, "incremental")

    @staticmethod
    def _bounded(start: datetime, end: datetime, reason: str) -> SyncWindow:
        if start > end:
            start = end
        return SyncWindow(start_date=start, end_date=end, reason=reason)
