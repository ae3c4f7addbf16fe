"""
Merged availability across several gardeners.

The service fetches each gardener's day concurrently, turns it into
admissible start hours with the domain ``SlotMerger`` and merges the
results. Gardeners that fail or time out simply contribute nothing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Callable, List, Sequence

import pendulum
from pendulum import DateTime

from ..domain.buffer_rules import base_blocks
from ..domain.exceptions import StorageError
from ..domain.models import DayAvailability, MergedSlot, as_date, iter_days
from ..domain.recurring import first_bookable_hour
from ..domain.slot_merger import SlotMerger
from .store import AvailabilityStore

logger = logging.getLogger(__name__)

Clock = Callable[[], DateTime]


class MergedAvailabilityService:
    """
    Computes merged slots for a date and scans forward for open days.

    Each gardener's minimum notice comes from their recurring settings,
    falling back to ``min_notice_hours``; hours starting before
    ``now + notice`` are not bookable.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        merger: SlotMerger | None = None,
        clock: Clock | None = None,
        timezone: str = "Europe/Madrid",
        min_notice_hours: int = 0,
        merge_timeout_seconds: float = 10.0,
        max_days_to_search: int = 14,
        max_results: int = 7,
    ) -> None:
        self._store = store
        self.merger = merger or SlotMerger()
        self._clock = clock or (lambda: pendulum.now(timezone))
        self.min_notice_hours = min_notice_hours
        self.merge_timeout_seconds = merge_timeout_seconds
        self.max_days_to_search = max_days_to_search
        self.max_results = max_results

    @property
    def working_day(self):
        return self.merger.working_day

    async def compute_merged_slots(
        self,
        gardener_ids: Sequence[str],
        day: date | str,
        client_id: str,
        duration_hours: int,
    ) -> List[MergedSlot]:
        """
        Start hours at which at least one gardener can take the whole job.

        Returns:
            Slots ascending by start hour; gardener ids follow input order
        """
        day = as_date(day)
        ids = list(dict.fromkeys(gardener_ids))
        if not ids or not 1 <= duration_hours <= self.working_day.block_count:
            return []

        now = self._clock()
        results = await asyncio.gather(*(
            self._guarded_starts(gardener_id, day, client_id, duration_hours, now)
            for gardener_id in ids
        ))

        return self.merger.merge(dict(zip(ids, results)), duration_hours)

    async def next_available_days(
        self,
        gardener_ids: Sequence[str],
        start_date: date | str,
        client_id: str,
        duration_hours: int,
        max_days_to_search: int | None = None,
        max_results: int | None = None,
    ) -> List[DayAvailability]:
        """
        Scan day by day from ``start_date`` for days with at least one slot.

        An empty list means nothing is open within the horizon.
        """
        max_days = self.max_days_to_search if max_days_to_search is None else max_days_to_search
        limit = self.max_results if max_results is None else max_results
        found: List[DayAvailability] = []
        if max_days <= 0 or limit <= 0:
            return found

        try:
            for day in iter_days(as_date(start_date), max_days):
                slots = await self.compute_merged_slots(
                    gardener_ids, day, client_id, duration_hours
                )
                if slots:
                    found.append(DayAvailability(date=day, slots=slots))
                    if len(found) >= limit:
                        break
        except Exception:
            logger.exception("Horizon scan aborted after %d day(s)", len(found))

        return found

    async def _guarded_starts(
        self,
        gardener_id: str,
        day: date,
        client_id: str,
        duration_hours: int,
        now: DateTime,
    ) -> List[int]:
        try:
            return await asyncio.wait_for(
                self._gardener_starts(gardener_id, day, client_id, duration_hours, now),
                timeout=self.merge_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Availability of %s on %s timed out after %.1fs",
                gardener_id, day, self.merge_timeout_seconds,
            )
        except StorageError as e:
            logger.warning("Skipping %s on %s: %s", gardener_id, day, e)
        return []

    async def _gardener_starts(
        self,
        gardener_id: str,
        day: date,
        client_id: str,
        duration_hours: int,
        now: DateTime,
    ) -> List[int]:
        hourly = await self._store.get_hourly_availability(gardener_id, day)
        if not any(hourly.values()):
            return []

        bookings = await self._store.get_confirmed_bookings(gardener_id, day)
        notice = await self._notice_hours(gardener_id)
        cutoff = first_bookable_hour(day, now.add(hours=notice), self.working_day)

        blocks = base_blocks(hourly, self.working_day)
        for block in blocks:
            if block.hour < cutoff:
                block.available = False

        return self.merger.bookable_starts(blocks, bookings, day, client_id, duration_hours)

    async def _notice_hours(self, gardener_id: str) -> int:
        try:
            settings = await self._store.get_recurring_settings(gardener_id)
        except StorageError as e:
            logger.debug("No recurring settings for %s: %s", gardener_id, e)
            return self.min_notice_hours
        if settings is None:
            return self.min_notice_hours
        return settings.min_notice_hours
