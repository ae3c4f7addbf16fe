"""
Materialization of weekly recurring schedules into hourly availability.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Set, Tuple

import pendulum
from pendulum import DateTime

from ..domain.exceptions import StorageError
from ..domain.models import RecurringSettings, as_date
from ..domain.recurring import (
    ScheduleProjector,
    group_templates,
    projection_window,
    templates_from_weekly_hours,
)
from .store import AvailabilityStore

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """What one generation run wrote and which template hours it had to skip."""
    gardener_id: str
    writes: Dict[date, List[int]] = field(default_factory=dict)
    conflicts: Dict[date, List[int]] = field(default_factory=dict)
    generated_through: date | None = None

    @property
    def dates_written(self) -> List[date]:
        return sorted(self.writes)


class RecurringScheduleService:
    """
    Keeps a gardener's materialized availability in step with their
    weekly template.

    Hours held by confirmed bookings, plus the trailing margin hour after
    each booking, are never written back as available.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        projector: ScheduleProjector | None = None,
        clock: Callable[[], DateTime] | None = None,
        timezone: str = "Europe/Madrid",
        weeks_to_maintain: int = 2,
        min_notice_hours: int = 0,
        trailing_margin_hours: int = 1,
    ) -> None:
        self._store = store
        self.projector = projector or ScheduleProjector()
        self._clock = clock or (lambda: pendulum.now(timezone))
        self.weeks_to_maintain = weeks_to_maintain
        self.min_notice_hours = min_notice_hours
        self.trailing_margin_hours = trailing_margin_hours

    @staticmethod
    def min_bookable_at(now: DateTime, min_notice_hours: int) -> DateTime:
        """Earliest instant a new job may start."""
        return now.add(hours=max(min_notice_hours, 0))

    async def generate_recurring_slots(
        self,
        gardener_id: str,
        force_regenerate: bool = False,
    ) -> ProjectionResult:
        """
        Project the weekly template onto the maintained window.

        Lazy runs only fill dates that were never generated or materialized;
        a forced run rewrites every date of the window. Each written date is
        fully replaced.

        Raises:
            StorageError: If templates cannot be read or a date cannot be written
        """
        templates = await self._store.get_recurring_templates(gardener_id)
        settings = await self._load_settings(gardener_id)

        if not templates:
            logger.info("Gardener %s has no recurring schedule, nothing to generate", gardener_id)
            return ProjectionResult(gardener_id=gardener_id,
                                    generated_through=settings.last_generated_date)

        today = as_date(self._clock())
        window = projection_window(today, settings.weeks_to_maintain)

        protected = await self._protected_hours(gardener_id, window)
        materialized: Set[date] = set()
        if not force_regenerate:
            records = await self._store.get_availability_range(gardener_id, window[0], window[-1])
            materialized = {record.date for record in records}
            # Days holding bookings are left exactly as they are
            materialized.update(protected)

        plan = self.projector.plan(
            templates,
            settings,
            today,
            materialized_dates=materialized,
            protected_hours=protected,
            force_regenerate=force_regenerate,
        )

        for day, hours in sorted(plan.writes.items()):
            await self._store.set_hourly_availability(gardener_id, day, hours)

        for day, hours in sorted(plan.conflicts.items()):
            logger.warning(
                "Recurring hours %s of %s on %s are held by bookings and were not written",
                hours, gardener_id, day,
            )

        if plan.generated_through != settings.last_generated_date:
            await self._store.save_recurring_settings(
                replace(settings, last_generated_date=plan.generated_through)
            )

        logger.info(
            "Generated %d date(s) for %s through %s (force=%s)",
            len(plan.writes), gardener_id, plan.generated_through, force_regenerate,
        )
        return ProjectionResult(
            gardener_id=gardener_id,
            writes=plan.writes,
            conflicts=plan.conflicts,
            generated_through=plan.generated_through,
        )

    async def save_schedule(
        self,
        gardener_id: str,
        weekly_hours: Mapping[int, Iterable[int]],
        weeks_to_maintain: int | None = None,
        min_notice_hours: int | None = None,
    ) -> ProjectionResult:
        """
        Replace the weekly template and regenerate the whole window.

        Args:
            gardener_id: Owner of the schedule
            weekly_hours: Start hours per day of week (0=Sunday)
            weeks_to_maintain: New projection horizon, unchanged if None
            min_notice_hours: New notice period, unchanged if None

        Raises:
            ValueError: If an hour falls outside the working day
        """
        working_day = self.projector.working_day
        for dow, hours in weekly_hours.items():
            outside = [h for h in hours if not working_day.contains(h)]
            if outside:
                raise ValueError(f"Hours {outside} on day {dow} are outside the working day")

        settings = await self._load_settings(gardener_id)
        updates = {}
        if weeks_to_maintain is not None:
            updates["weeks_to_maintain"] = weeks_to_maintain
        if min_notice_hours is not None:
            updates["min_notice_hours"] = min_notice_hours
        settings = replace(settings, **updates)

        templates = templates_from_weekly_hours(gardener_id, weekly_hours)

        await self._store.save_recurring_settings(settings)
        await self._store.replace_recurring_templates(gardener_id, templates)
        logger.info("Saved %d schedule range(s) for %s", len(templates), gardener_id)

        return await self.generate_recurring_slots(gardener_id, force_regenerate=True)

    async def get_schedule(self, gardener_id: str) -> List[Tuple[int, int, List[int]]]:
        """Template ranges grouped as ``(start, end, [days])``."""
        try:
            templates = await self._store.get_recurring_templates(gardener_id)
        except StorageError as e:
            logger.warning("Could not read schedule of %s: %s", gardener_id, e)
            return []
        return group_templates(templates)

    async def _load_settings(self, gardener_id: str) -> RecurringSettings:
        settings = await self._store.get_recurring_settings(gardener_id)
        if settings is None:
            settings = RecurringSettings(
                gardener_id=gardener_id,
                weeks_to_maintain=self.weeks_to_maintain,
                min_notice_hours=self.min_notice_hours,
            )
        return settings

    async def _protected_hours(
        self, gardener_id: str, window: List[date]
    ) -> Dict[date, Set[int]]:
        working_day = self.projector.working_day
        protected: Dict[date, Set[int]] = {}

        for day in window:
            bookings = await self._store.get_confirmed_bookings(gardener_id, day)
            hours: Set[int] = set()
            for booking in bookings:
                hours.update(booking.hours())
                margin = range(booking.end_hour, booking.end_hour + self.trailing_margin_hours)
                hours.update(h for h in margin if working_day.contains(h))
            if hours:
                protected[day] = hours

        return protected
