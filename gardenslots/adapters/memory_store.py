"""
In-memory availability store for testing and offline (mock) mode.

State can be seeded from a JSON fixture using the same row format as the
hosted backend, so mock runs exercise the row conversion too. Mutations are
serialised with an asyncio lock, which makes confirm + sibling cancellation
a single transaction.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from pendulum import DateTime

from ..domain.exceptions import UnsupportedQueryError
from ..domain.models import (
    AvailabilityRecord,
    BookingRecord,
    BookingStatus,
    FULL_DAY,
    GardenerProfile,
    JobSpec,
    RecurringScheduleTemplate,
    RecurringSettings,
    as_date,
)
from .rows import (
    booking_from_row,
    gardener_from_row,
    settings_from_row,
    template_from_row,
    time_to_hour,
)

logger = logging.getLogger(__name__)


class InMemoryAvailabilityStore:
    """
    Dictionary-backed implementation of ``AvailabilityStore``.

    Every write is appended to ``write_log`` as ``(operation, gardener_id,
    date_or_none)`` so callers can observe what a run actually wrote.
    """

    def __init__(self, supports_containment: bool = True):
        self.supports_containment = supports_containment
        self.write_log: List[Tuple[str, str, date | None]] = []
        self._availability: Dict[Tuple[str, date], Dict[int, bool]] = {}
        self._bookings: Dict[str, BookingRecord] = {}
        self._gardeners: Dict[str, GardenerProfile] = {}
        self._templates: Dict[str, List[RecurringScheduleTemplate]] = {}
        self._settings: Dict[str, RecurringSettings] = {}
        self._lock = asyncio.Lock()

    # ---- seeding -------------------------------------------------------

    @classmethod
    def from_json(cls, data_file: Path, supports_containment: bool = True) -> "InMemoryAvailabilityStore":
        """
        Load a store from a JSON fixture.

        Expected keys (all optional): ``gardeners``, ``availability``
        (``{"gardener_id", "date", "hours": [...]}``), ``bookings``,
        ``recurring_schedules``, ``recurring_settings``.
        """
        store = cls(supports_containment=supports_containment)

        with open(data_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Fixture {data_file} must contain a mapping at the root level.")

        for row in data.get("gardeners", []):
            store.add_gardener(gardener_from_row(row))
        for row in data.get("availability", []):
            hours = [time_to_hour(h) for h in row.get("hours", [])]
            store.seed_availability(str(row["gardener_id"]), as_date(row["date"]), hours)
        for row in data.get("bookings", []):
            store.add_booking(booking_from_row(row))
        for row in data.get("recurring_schedules", []):
            template = template_from_row(row)
            store._templates.setdefault(template.gardener_id, []).append(template)
        for row in data.get("recurring_settings", []):
            settings = settings_from_row(row)
            store._settings[settings.gardener_id] = settings

        logger.debug(
            "Loaded fixture %s: %d gardeners, %d bookings",
            data_file, len(store._gardeners), len(store._bookings),
        )
        return store

    def add_gardener(self, profile: GardenerProfile) -> None:
        self._gardeners[profile.user_id] = profile

    def add_booking(self, booking: BookingRecord) -> None:
        self._bookings[booking.id] = booking

    def seed_availability(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        """Set availability without recording a write."""
        self._availability[(gardener_id, day)] = {
            hour: True for hour in hours if FULL_DAY.contains(hour)
        }

    def seed_settings(self, settings: RecurringSettings) -> None:
        self._settings[settings.gardener_id] = settings

    # ---- availability --------------------------------------------------

    async def get_hourly_availability(self, gardener_id: str, day: date) -> Dict[int, bool]:
        return dict(self._availability.get((gardener_id, day), {}))

    async def get_availability_range(
        self, gardener_id: str, start: date, end: date
    ) -> List[AvailabilityRecord]:
        records: List[AvailabilityRecord] = []
        for (gid, day), hours in sorted(self._availability.items(), key=lambda item: item[0][1]):
            if gid != gardener_id or not start <= day <= end:
                continue
            for hour, available in sorted(hours.items()):
                records.append(AvailabilityRecord(gardener_id, day, hour, available))
        return records

    async def set_hourly_availability(
        self, gardener_id: str, day: date, available_hours: Sequence[int]
    ) -> None:
        async with self._lock:
            self._availability[(gardener_id, day)] = {hour: True for hour in available_hours}
            self.write_log.append(("set_hourly_availability", gardener_id, day))

    async def block_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        await self._set_flag(gardener_id, day, hours, False, "block_hours")

    async def release_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        await self._set_flag(gardener_id, day, hours, True, "release_hours")

    async def _set_flag(
        self, gardener_id: str, day: date, hours: Sequence[int], value: bool, operation: str
    ) -> None:
        # Only existing rows are updated, like an UPDATE ... WHERE start_time = ...
        async with self._lock:
            stored = self._availability.get((gardener_id, day), {})
            for hour in hours:
                if hour in stored:
                    stored[hour] = value
            self.write_log.append((operation, gardener_id, day))

    # ---- bookings ------------------------------------------------------

    async def get_confirmed_bookings(self, gardener_id: str, day: date) -> List[BookingRecord]:
        bookings = [
            b for b in self._bookings.values()
            if b.gardener_id == gardener_id and b.date == day and b.status.occupies_calendar
        ]
        return sorted(bookings, key=lambda b: b.start_hour)

    async def get_booking(self, booking_id: str) -> BookingRecord | None:
        return self._bookings.get(booking_id)

    async def create_pending_bookings(
        self,
        job: JobSpec,
        gardener_ids: Sequence[str],
        expires_at: DateTime,
        created_at: DateTime,
    ) -> List[BookingRecord]:
        created: List[BookingRecord] = []
        async with self._lock:
            for gardener_id in gardener_ids:
                booking = BookingRecord(
                    id=str(uuid.uuid4()),
                    client_id=job.client_id,
                    gardener_id=gardener_id,
                    service_id=job.service_id,
                    date=job.date,
                    start_hour=job.start_hour,
                    duration_hours=job.duration_hours,
                    status=BookingStatus.PENDING,
                    total_price=job.total_price,
                    expires_at=expires_at,
                    client_address=job.client_address,
                    notes=job.notes,
                    travel_fee=job.travel_fee,
                    hourly_rate=job.effective_hourly_rate(),
                    created_at=created_at,
                )
                self._bookings[booking.id] = booking
                created.append(booking)
                self.write_log.append(("create_pending_booking", gardener_id, job.date))
        return created

    async def list_pending_bookings(self, gardener_id: str) -> List[BookingRecord]:
        return [
            b for b in self._bookings.values()
            if b.gardener_id == gardener_id and b.status == BookingStatus.PENDING
        ]

    async def mark_expired(self, booking_ids: Sequence[str], gardener_id: str) -> int:
        changed = 0
        async with self._lock:
            for booking_id in booking_ids:
                booking = self._bookings.get(booking_id)
                if booking is None or booking.gardener_id != gardener_id:
                    continue
                if booking.status != BookingStatus.PENDING:
                    continue
                self._bookings[booking_id] = replace(booking, status=BookingStatus.EXPIRED)
                changed += 1
        return changed

    async def confirm_and_cancel_siblings(
        self, booking_id: str, gardener_id: str, now: DateTime
    ) -> bool:
        async with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None or booking.gardener_id != gardener_id:
                return False
            if booking.status != BookingStatus.PENDING or booking.is_expired(now):
                return False

            self._bookings[booking_id] = replace(booking, status=BookingStatus.CONFIRMED)
            for other_id, other in list(self._bookings.items()):
                if other_id == booking_id or other.status != BookingStatus.PENDING:
                    continue
                if other.job_key == booking.job_key:
                    self._bookings[other_id] = replace(other, status=BookingStatus.CANCELLED)
            self.write_log.append(("confirm_booking", gardener_id, booking.date))
            return True

    async def update_booking_status(
        self,
        booking_id: str,
        gardener_id: str | None,
        status: BookingStatus,
        expected: BookingStatus | None = None,
    ) -> bool:
        async with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None:
                return False
            if gardener_id is not None and booking.gardener_id != gardener_id:
                return False
            if expected is not None and booking.status != expected:
                return False
            self._bookings[booking_id] = replace(booking, status=status)
            self.write_log.append(("update_booking_status", booking.gardener_id, booking.date))
            return True

    # ---- gardeners -----------------------------------------------------

    async def list_gardeners(
        self,
        service_ids: Sequence[str] | None = None,
        only_available: bool = True,
    ) -> List[GardenerProfile]:
        if service_ids and not self.supports_containment:
            raise UnsupportedQueryError("Set containment on services is not supported")

        profiles = list(self._gardeners.values())
        if only_available:
            profiles = [p for p in profiles if p.is_available]
        if service_ids:
            profiles = [p for p in profiles if p.offers_all(service_ids)]
        return profiles

    # ---- recurring schedules -------------------------------------------

    async def get_recurring_templates(self, gardener_id: str) -> List[RecurringScheduleTemplate]:
        return list(self._templates.get(gardener_id, []))

    async def replace_recurring_templates(
        self, gardener_id: str, templates: Sequence[RecurringScheduleTemplate]
    ) -> None:
        async with self._lock:
            self._templates[gardener_id] = list(templates)
            self.write_log.append(("replace_recurring_templates", gardener_id, None))

    async def get_recurring_settings(self, gardener_id: str) -> RecurringSettings | None:
        return self._settings.get(gardener_id)

    async def save_recurring_settings(self, settings: RecurringSettings) -> None:
        async with self._lock:
            self._settings[settings.gardener_id] = settings
            self.write_log.append(("save_recurring_settings", settings.gardener_id, None))
