"""
Projection of a weekly recurring schedule onto concrete dates.

The projector decides which dates to (re)write and with which hours. It
never writes itself and never drops hours for notice periods: the caller
persists the plan, and bookable-hour filtering happens at query time.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from pendulum import DateTime

from .models import (
    DEFAULT_WORKING_DAY,
    RecurringScheduleTemplate,
    RecurringSettings,
    WorkingDay,
    as_date,
    day_of_week,
    iter_days,
)


def coalesce_hours(hours: Iterable[int]) -> List[Tuple[int, int]]:
    """
    Collapse a set of start hours into minimal ``(start, end)`` ranges.

    Example: {9, 10, 11, 14, 15} -> [(9, 12), (14, 16)]
    """
    ordered = sorted(set(hours))
    if not ordered:
        return []

    ranges: List[Tuple[int, int]] = []
    range_start = previous = ordered[0]

    for hour in ordered[1:]:
        if hour == previous + 1:
            previous = hour
            continue
        ranges.append((range_start, previous + 1))
        range_start = previous = hour

    ranges.append((range_start, previous + 1))
    return ranges


def templates_from_weekly_hours(
    gardener_id: str,
    weekly_hours: Mapping[int, Iterable[int]],
) -> List[RecurringScheduleTemplate]:
    """Build one template row per contiguous range per day of week."""
    templates: List[RecurringScheduleTemplate] = []
    for dow in sorted(weekly_hours):
        for start, end in coalesce_hours(weekly_hours[dow]):
            templates.append(
                RecurringScheduleTemplate(
                    gardener_id=gardener_id,
                    day_of_week=dow,
                    start_hour=start,
                    end_hour=end,
                )
            )
    return templates


def template_hours(
    templates: Sequence[RecurringScheduleTemplate],
    dow: int,
    working_day: WorkingDay = DEFAULT_WORKING_DAY,
) -> Set[int]:
    """Working hours the templates make available on a given weekday."""
    hours: Set[int] = set()
    for template in templates:
        if template.day_of_week == dow:
            hours.update(h for h in template.hours() if working_day.contains(h))
    return hours


def group_templates(
    templates: Sequence[RecurringScheduleTemplate],
) -> List[Tuple[int, int, List[int]]]:
    """Group rows sharing a time range: ``[(start, end, [days...]), ...]``."""
    grouped: Dict[Tuple[int, int], List[int]] = {}
    for template in templates:
        grouped.setdefault((template.start_hour, template.end_hour), []).append(
            template.day_of_week
        )
    return [
        (start, end, sorted(set(days)))
        for (start, end), days in sorted(grouped.items())
    ]


def projection_window(today: date, weeks_to_maintain: int) -> List[date]:
    """Dates from ``today`` inclusive covering ``weeks_to_maintain`` weeks."""
    return list(iter_days(today, 7 * weeks_to_maintain))


@dataclass
class ProjectionPlan:
    """
    Dates to write (full replace) and template hours that could not be
    materialized because a confirmed booking holds them.
    """
    writes: Dict[date, List[int]] = field(default_factory=dict)
    conflicts: Dict[date, List[int]] = field(default_factory=dict)
    generated_through: date | None = None

    @property
    def is_empty(self) -> bool:
        return not self.writes


class ScheduleProjector:
    """
    Plans materialized availability from recurring templates.

    Lazy mode only extends the horizon: dates already materialized or
    already covered by a previous run are left alone. Forced mode rewrites
    the whole window. Either way, hours held by confirmed bookings are never
    written as available; colliding template hours are reported instead.
    """

    def __init__(self, working_day: WorkingDay = DEFAULT_WORKING_DAY):
        self.working_day = working_day

    def plan(
        self,
        templates: Sequence[RecurringScheduleTemplate],
        settings: RecurringSettings,
        today: date,
        materialized_dates: Iterable[date],
        protected_hours: Mapping[date, Iterable[int]],
        force_regenerate: bool = False,
    ) -> ProjectionPlan:
        window = projection_window(today, settings.weeks_to_maintain)
        generated_through = window[-1]
        last = settings.last_generated_date
        if last is not None and last > generated_through and not force_regenerate:
            generated_through = last

        plan = ProjectionPlan(generated_through=generated_through)
        materialized = set(materialized_dates)

        for day in window:
            if not force_regenerate:
                if day in materialized:
                    continue
                if last is not None and day <= last:
                    continue

            hours = template_hours(templates, day_of_week(day), self.working_day)
            protected = set(protected_hours.get(day, ()))

            colliding = sorted(hours & protected)
            if colliding:
                plan.conflicts[day] = colliding

            writable = sorted(hours - protected)
            if writable or force_regenerate:
                plan.writes[day] = writable

        return plan


def first_bookable_hour(
    day: date,
    min_bookable_at: DateTime | None,
    working_day: WorkingDay = DEFAULT_WORKING_DAY,
) -> int:
    """
    First start hour on ``day`` that is not before ``min_bookable_at``.

    ``min_bookable_at`` is read in its own timezone, which must be the
    marketplace timezone. Returns ``close_hour`` when nothing on ``day`` is
    bookable anymore.
    """
    if min_bookable_at is None:
        return working_day.open_hour

    cutoff_day = as_date(min_bookable_at)
    if cutoff_day < day:
        return working_day.open_hour
    if cutoff_day > day:
        return working_day.close_hour

    hour = min_bookable_at.hour
    if min_bookable_at.minute or min_bookable_at.second or min_bookable_at.microsecond:
        hour += 1
    return min(max(hour, working_day.open_hour), working_day.close_hour)
