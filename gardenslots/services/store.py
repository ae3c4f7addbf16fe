"""
Storage port consumed by the availability engine.

The store is the shared, mutable state of the marketplace (hourly
availability, bookings, recurring schedules). Adapters implement this
protocol; the services never talk to a backend directly.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Protocol, Sequence

from pendulum import DateTime

from ..domain.models import (
    AvailabilityRecord,
    BookingRecord,
    BookingStatus,
    GardenerProfile,
    JobSpec,
    RecurringScheduleTemplate,
    RecurringSettings,
)


class AvailabilityStore(Protocol):
    """Protocol describing the store behaviour needed by the services."""

    async def get_hourly_availability(self, gardener_id: str, day: date) -> Dict[int, bool]:
        """Return ``{hour: is_available}`` for the stored hours of a date."""

    async def get_availability_range(
        self, gardener_id: str, start: date, end: date
    ) -> List[AvailabilityRecord]:
        """Return stored hour records between two dates, inclusive."""

    async def set_hourly_availability(
        self, gardener_id: str, day: date, available_hours: Sequence[int]
    ) -> None:
        """Replace the whole date with the given available hours."""

    async def block_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        """Mark existing hour records unavailable."""

    async def release_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        """Mark existing hour records available again."""

    async def get_confirmed_bookings(self, gardener_id: str, day: date) -> List[BookingRecord]:
        """Confirmed and in-progress bookings, ascending by start hour."""

    async def get_booking(self, booking_id: str) -> BookingRecord | None:
        """Fetch one booking row."""

    async def create_pending_bookings(
        self,
        job: JobSpec,
        gardener_ids: Sequence[str],
        expires_at: DateTime,
        created_at: DateTime,
    ) -> List[BookingRecord]:
        """Insert one pending row per gardener for the same job."""

    async def list_pending_bookings(self, gardener_id: str) -> List[BookingRecord]:
        """Pending rows addressed to a gardener, expired ones included."""

    async def mark_expired(self, booking_ids: Sequence[str], gardener_id: str) -> int:
        """Move pending rows to expired; returns the number of rows changed."""

    async def confirm_and_cancel_siblings(
        self, booking_id: str, gardener_id: str, now: DateTime
    ) -> bool:
        """
        Confirm a pending, unexpired booking and cancel its pending siblings.

        Returns False when the booking was no longer pending (lost race).
        """

    async def update_booking_status(
        self,
        booking_id: str,
        gardener_id: str | None,
        status: BookingStatus,
        expected: BookingStatus | None = None,
    ) -> bool:
        """Conditionally change a booking's status; True if a row changed."""

    async def list_gardeners(
        self,
        service_ids: Sequence[str] | None = None,
        only_available: bool = True,
    ) -> List[GardenerProfile]:
        """
        Gardener profiles, optionally offering all of ``service_ids``.

        May raise ``UnsupportedQueryError`` if the backend cannot express
        set containment.
        """

    async def get_recurring_templates(self, gardener_id: str) -> List[RecurringScheduleTemplate]:
        """The gardener's weekly template rows."""

    async def replace_recurring_templates(
        self, gardener_id: str, templates: Sequence[RecurringScheduleTemplate]
    ) -> None:
        """Delete every template row of the gardener, then insert these."""

    async def get_recurring_settings(self, gardener_id: str) -> RecurringSettings | None:
        """Projection settings, or None if the gardener never saved any."""

    async def save_recurring_settings(self, settings: RecurringSettings) -> None:
        """Upsert projection settings."""
