"""
Domain models for hourly availability, bookings and merged slots.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterator, List, Tuple

import pendulum
from pendulum import DateTime

PENDING_TTL_HOURS = 24
DEFAULT_TRAVEL_FEE = 15.0


def as_date(value: "date | str") -> date:
    """
    Normalise a date-like value to a plain ``datetime.date``.

    Accepts ``date``/``datetime`` objects (pendulum ones included) and
    ``YYYY-MM-DD`` strings.
    """
    if isinstance(value, datetime):
        return date(value.year, value.month, value.day)
    if isinstance(value, date):
        return date(value.year, value.month, value.day)
    parsed = pendulum.from_format(str(value).strip()[:10], "YYYY-MM-DD")
    return date(parsed.year, parsed.month, parsed.day)


def day_of_week(day: date) -> int:
    """Day of week with 0=Sunday ... 6=Saturday."""
    return day.isoweekday() % 7


def iter_days(start: date, count: int) -> Iterator[date]:
    """Yield ``count`` consecutive calendar days starting at ``start``."""
    for offset in range(count):
        yield start + timedelta(days=offset)


def hour_label(hour: int) -> str:
    return f"{hour:02d}:00"


@dataclass(frozen=True)
class WorkingDay:
    """
    The bookable day, split into one-hour blocks.

    Invariant: open_hour < close_hour, both within 0..24.
    """
    open_hour: int = 8
    close_hour: int = 20

    def __post_init__(self):
        if not 0 <= self.open_hour < self.close_hour <= 24:
            raise ValueError(
                f"Invalid working day {self.open_hour}:00-{self.close_hour}:00"
            )

    def hours(self) -> range:
        """Start hours of every block (8..19 for the default day)."""
        return range(self.open_hour, self.close_hour)

    def contains(self, hour: int) -> bool:
        return self.open_hour <= hour < self.close_hour

    def fits(self, start_hour: int, duration_hours: int) -> bool:
        """Check a job starting at ``start_hour`` ends by closing time."""
        return (
            duration_hours >= 1
            and self.contains(start_hour)
            and start_hour + duration_hours <= self.close_hour
        )

    @property
    def block_count(self) -> int:
        return self.close_hour - self.open_hour


DEFAULT_WORKING_DAY = WorkingDay()

# Record-level bound; the configured working day is enforced by the services.
FULL_DAY = WorkingDay(0, 24)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"

    @property
    def occupies_calendar(self) -> bool:
        """Whether a booking in this state blocks the gardener's hours."""
        return self in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0 or not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Coordinates out of range: {self.lat}, {self.lng}")


@dataclass(frozen=True)
class AvailabilityRecord:
    """
    One available (or blocked) hour of a gardener's calendar.

    Absence of a record means the hour is unavailable.
    """
    gardener_id: str
    date: date
    hour: int
    is_available: bool = True

    def __post_init__(self):
        if not FULL_DAY.contains(self.hour):
            raise ValueError(f"Hour {self.hour} is not an hour of the day")


@dataclass(frozen=True)
class BookingRecord:
    """
    A booking row. Broadcast jobs produce one pending row per gardener.

    Invariant: duration_hours >= 1 and the job fits in a 24h day.
    """
    id: str
    client_id: str
    gardener_id: str
    service_id: str
    date: date
    start_hour: int
    duration_hours: int
    status: BookingStatus = BookingStatus.PENDING
    total_price: float = 0.0
    expires_at: DateTime | None = None
    client_address: str = ""
    notes: str = ""
    travel_fee: float = DEFAULT_TRAVEL_FEE
    hourly_rate: float | None = None
    created_at: DateTime | None = None

    def __post_init__(self):
        if self.duration_hours < 1:
            raise ValueError(f"Booking {self.id} must last at least one hour")
        if self.start_hour < 0 or self.end_hour > 24:
            raise ValueError(
                f"Booking {self.id} does not fit in a day: "
                f"{self.start_hour}+{self.duration_hours}h"
            )

    @property
    def end_hour(self) -> int:
        """Exclusive end hour."""
        return self.start_hour + self.duration_hours

    @property
    def start_time(self) -> str:
        return hour_label(self.start_hour)

    @property
    def job_key(self) -> Tuple[str, str, date, int]:
        """Fields shared by every row of one broadcast job."""
        return (self.client_id, self.service_id, self.date, self.start_hour)

    def hours(self) -> List[int]:
        return list(range(self.start_hour, self.end_hour))

    def occupies(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour

    def effective_expiry(self) -> DateTime | None:
        """Expiry instant, falling back to creation time + 24h."""
        if self.expires_at is not None:
            return self.expires_at
        if self.created_at is not None:
            return self.created_at.add(hours=PENDING_TTL_HOURS)
        return None

    def is_expired(self, now: DateTime) -> bool:
        expiry = self.effective_expiry()
        return (
            self.status == BookingStatus.PENDING
            and expiry is not None
            and now > expiry
        )


@dataclass(frozen=True)
class JobSpec:
    """The logical job a client broadcasts to several gardeners."""
    client_id: str
    service_id: str
    date: date
    start_hour: int
    duration_hours: int
    total_price: float
    client_address: str = ""
    notes: str = ""
    travel_fee: float = DEFAULT_TRAVEL_FEE
    hourly_rate: float | None = None

    def __post_init__(self):
        if not FULL_DAY.fits(self.start_hour, self.duration_hours):
            raise ValueError(
                f"Job {self.start_hour}:00 +{self.duration_hours}h "
                f"does not fit in a day"
            )

    def effective_hourly_rate(self) -> float:
        if self.hourly_rate is not None and self.hourly_rate > 0:
            return self.hourly_rate
        per_hour = (self.total_price - self.travel_fee) / max(self.duration_hours, 1)
        return max(1.0, round(per_hour, 2))


@dataclass(frozen=True)
class GardenerProfile:
    user_id: str
    address: str | None = None
    work_radius_km: float | None = None
    service_ids: Tuple[str, ...] = ()
    is_available: bool = True

    def offers_all(self, service_ids: "List[str] | Tuple[str, ...]") -> bool:
        return set(service_ids).issubset(self.service_ids)

    def effective_radius_km(self, default_km: float) -> float:
        if self.work_radius_km is None or self.work_radius_km < 0:
            return default_km
        return float(self.work_radius_km)


@dataclass
class HourBlock:
    """One hour of a gardener's day as seen by a specific client."""
    hour: int
    available: bool
    has_buffer: bool = False

    @property
    def label(self) -> str:
        return f"{hour_label(self.hour)} - {hour_label(self.hour + 1)}"


class ConflictKind(str, Enum):
    DIRECT = "direct"
    BUFFER = "buffer"
    ERROR = "error"


@dataclass(frozen=True)
class SequenceCheck:
    """Outcome of testing a contiguous booking request."""
    can_book: bool
    reason: str | None = None
    conflict: ConflictKind | None = None

    @classmethod
    def ok(cls) -> "SequenceCheck":
        return cls(can_book=True)

    @classmethod
    def rejected(cls, conflict: ConflictKind, reason: str) -> "SequenceCheck":
        return cls(can_book=False, reason=reason, conflict=conflict)


@dataclass
class MergedSlot:
    """
    A start hour at least one gardener can fulfil for the whole duration.

    ``gardener_ids`` keeps insertion order; callers must not assume sorting.
    """
    start_hour: int
    end_hour: int
    gardener_ids: List[str] = field(default_factory=list)

    @property
    def duration_hours(self) -> int:
        return self.end_hour - self.start_hour

    def format_display(self) -> str:
        count = len(self.gardener_ids)
        return (
            f"{hour_label(self.start_hour)} – {hour_label(self.end_hour)} "
            f"({count} jardinero{'s' if count != 1 else ''})"
        )


@dataclass
class DayAvailability:
    date: date
    slots: List[MergedSlot]


@dataclass(frozen=True)
class RecurringScheduleTemplate:
    """
    A standing weekly rule; end hour is exclusive.

    Invariant: 0 <= day_of_week <= 6 (0=Sunday), start_hour < end_hour.
    """
    gardener_id: str
    day_of_week: int
    start_hour: int
    end_hour: int

    def __post_init__(self):
        if self.day_of_week not in range(7):
            raise ValueError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError(
                f"Invalid template range {self.start_hour}-{self.end_hour}"
            )

    def hours(self) -> range:
        return range(self.start_hour, self.end_hour)


@dataclass(frozen=True)
class RecurringSettings:
    gardener_id: str
    weeks_to_maintain: int = 2
    min_notice_hours: int = 0
    last_generated_date: date | None = None

    def __post_init__(self):
        if self.weeks_to_maintain < 1:
            raise ValueError("weeks_to_maintain must be at least 1")
        if self.min_notice_hours < 0:
            raise ValueError("min_notice_hours cannot be negative")


HourlyAvailability = Dict[int, bool]


class MissingLocationPolicy(str, Enum):
    """How to treat a gardener whose address is missing or cannot be geocoded."""
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
