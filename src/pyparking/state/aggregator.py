"""Statistics engine.

Derives counters, extrema, the running occupancy average and the
hour-of-day buckets from :class:`~pyparking.state.store.ParkingStore`
transitions.  Counters change only through :meth:`record_changes` and the
tick methods; the published :class:`SystemStatistics` is rebuilt from
scratch on every :meth:`snapshot`.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date, datetime

from pyparking._constants import hour_label
from pyparking.models._base import utcnow
from pyparking.models.statistics import HourlyBucket, HourlyResetPolicy, SystemStatistics, empty_buckets
from pyparking.state.events import SpaceChange
from pyparking.state.store import ParkingStore


class StatisticsAggregator:
    def __init__(
        self,
        store: ParkingStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        hourly_reset: HourlyResetPolicy = HourlyResetPolicy.NEVER,
    ) -> None:
        self._store = store
        self._clock = clock
        self._hourly_reset = hourly_reset
        self._started_at = clock()

        self._daily_entries = 0
        self._total_changes = 0
        self._peak_occupancy = 0
        self._last_entry_time: datetime | None = None
        self._last_exit_time: datetime | None = None

        self._occupied_samples = 0
        self._sample_count = 0
        self._average_occupancy = 0

        self._buckets: list[HourlyBucket] = empty_buckets(store.total_spaces, self._started_at)
        self._bucket_day: date = self._started_at.date()

    @property
    def daily_entries(self) -> int:
        return self._daily_entries

    @property
    def peak_occupancy(self) -> int:
        return self._peak_occupancy

    @property
    def average_occupancy_percent(self) -> int:
        return self._average_occupancy

    def record_changes(self, changes: Sequence[SpaceChange]) -> None:
        """Fold one batch of space changes into the counters.

        Entries are counted per ``free -> occupied`` transition and never
        decremented by exits.
        """
        if not changes:
            return
        entries = [change for change in changes if change.is_entry]
        exits = [change for change in changes if change.is_exit]

        self._daily_entries += len(entries)
        if entries:
            self._last_entry_time = max(change.changed_at for change in entries)
        if exits:
            self._last_exit_time = max(change.changed_at for change in exits)
        self._total_changes += 1
        self._peak_occupancy = max(self._peak_occupancy, self._store.occupied_count())

    def snapshot(self) -> SystemStatistics:
        """Recompute the statistics record from current state."""
        now = self._clock()
        occupied = self._store.occupied_count()
        self._peak_occupancy = max(self._peak_occupancy, occupied)
        return SystemStatistics(
            total_spaces=self._store.total_spaces,
            occupied_spaces=occupied,
            daily_entries=self._daily_entries,
            peak_occupancy=self._peak_occupancy,
            average_occupancy_percent=self._average_occupancy,
            total_changes_today=self._total_changes,
            last_entry_time=self._last_entry_time,
            last_exit_time=self._last_exit_time,
            uptime_seconds=int((now - self._started_at).total_seconds()),
            updated_at=now,
        )

    def sample_occupancy(self) -> int:
        """Take one occupancy sample and return the updated average percent."""
        self._occupied_samples += self._store.occupied_count()
        self._sample_count += 1
        self._average_occupancy = round(
            self._occupied_samples / self._sample_count / self._store.total_spaces * 100
        )
        return self._average_occupancy

    def hourly_buckets(self) -> list[HourlyBucket]:
        return list(self._buckets)

    def update_hourly(self) -> list[HourlyBucket]:
        """Overwrite the bucket for the current hour with a fresh snapshot.

        Other hours are never touched, except that under
        :attr:`HourlyResetPolicy.DAILY` the whole array is cleared the
        first time a new calendar day is observed.
        """
        now = self._clock()
        if self._hourly_reset == HourlyResetPolicy.DAILY and now.date() != self._bucket_day:
            self._buckets = empty_buckets(self._store.total_spaces, now)
        self._bucket_day = now.date()

        occupied = self._store.occupied_count()
        self._buckets[now.hour] = HourlyBucket(
            hour=hour_label(now.hour),
            occupied=occupied,
            available=self._store.total_spaces - occupied,
            timestamp=now,
        )
        return self.hourly_buckets()
