"""
Gardener-side editing of per-date hourly availability.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Mapping, Sequence

from ..domain.exceptions import StorageError
from ..domain.models import DEFAULT_WORKING_DAY, WorkingDay, as_date
from .store import AvailabilityStore

logger = logging.getLogger(__name__)

DEFAULT_DAY_HOURS = range(8, 18)


class AvailabilityService:
    """
    Reads and edits the hourly availability of one gardener at a time.

    Reads degrade to empty results; writes raise ``StorageError``.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        working_day: WorkingDay = DEFAULT_WORKING_DAY,
    ) -> None:
        self._store = store
        self.working_day = working_day

    async def get_hourly_availability(self, gardener_id: str, day: date | str) -> Dict[int, bool]:
        """``{hour: available}`` for every working hour, missing hours False."""
        day = as_date(day)
        try:
            stored = await self._store.get_hourly_availability(gardener_id, day)
        except StorageError as e:
            logger.warning("Could not read availability of %s on %s: %s", gardener_id, day, e)
            stored = {}
        return {hour: bool(stored.get(hour, False)) for hour in self.working_day.hours()}

    async def set_availability(
        self, gardener_id: str, day: date | str, hours: Sequence[int]
    ) -> None:
        """
        Replace a date's availability with exactly ``hours``.

        Raises:
            ValueError: If an hour is outside the working day
        """
        day = as_date(day)
        self._check_hours(hours)
        await self._store.set_hourly_availability(gardener_id, day, sorted(set(hours)))
        logger.info("Set %d available hour(s) for %s on %s", len(set(hours)), gardener_id, day)

    async def set_default_availability(self, gardener_id: str, day: date | str) -> None:
        await self.set_availability(gardener_id, day, list(DEFAULT_DAY_HOURS))

    async def set_weekly_availability(
        self,
        gardener_id: str,
        week_start: date | str,
        hours_by_date: Mapping[date | str, Sequence[int]],
    ) -> List[date]:
        """
        Replace several dates of one week.

        Returns:
            The dates written, ascending
        """
        start = as_date(week_start)
        normalised = {as_date(day): hours for day, hours in hours_by_date.items()}

        for day, hours in normalised.items():
            if not 0 <= (day - start).days < 7:
                raise ValueError(f"{day} is not in the week starting {start}")
            self._check_hours(hours)

        for day in sorted(normalised):
            await self._store.set_hourly_availability(
                gardener_id, day, sorted(set(normalised[day]))
            )
        return sorted(normalised)

    async def block_hours(self, gardener_id: str, day: date | str, hours: Sequence[int]) -> None:
        await self._store.block_hours(gardener_id, as_date(day), list(hours))

    async def release_hours(self, gardener_id: str, day: date | str, hours: Sequence[int]) -> None:
        await self._store.release_hours(gardener_id, as_date(day), list(hours))

    async def get_available_dates(
        self, gardener_id: str, start: date | str, end: date | str
    ) -> List[date]:
        """Dates between ``start`` and ``end`` with at least one open hour."""
        try:
            records = await self._store.get_availability_range(
                gardener_id, as_date(start), as_date(end)
            )
        except StorageError as e:
            logger.warning("Could not read availability range of %s: %s", gardener_id, e)
            return []
        return sorted({record.date for record in records if record.is_available})

    async def is_available(self, gardener_id: str, day: date | str, hour: int) -> bool:
        if not self.working_day.contains(hour):
            return False
        hourly = await self.get_hourly_availability(gardener_id, day)
        return hourly.get(hour, False)

    def _check_hours(self, hours: Sequence[int]) -> None:
        outside = sorted(h for h in hours if not self.working_day.contains(h))
        if outside:
            raise ValueError(
                f"Hours {outside} are outside the working day "
                f"({self.working_day.open_hour}:00-{self.working_day.close_hour}:00)"
            )
