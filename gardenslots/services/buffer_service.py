"""
Store-backed buffer checks between jobs of different clients.

Wraps the pure rules of ``domain.buffer_rules`` with the booking reads they
need. Read failures never surface as exceptions here: each operation falls
back to the degraded result the booking UI expects.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Sequence

from pendulum import DateTime

from ..domain import buffer_rules
from ..domain.buffer_rules import CHECK_ERROR_REASON
from ..domain.exceptions import StorageError
from ..domain.models import (
    BookingRecord,
    ConflictKind,
    DEFAULT_WORKING_DAY,
    HourBlock,
    SequenceCheck,
    WorkingDay,
)
from ..domain.recurring import first_bookable_hour
from .store import AvailabilityStore

logger = logging.getLogger(__name__)

MAX_SUGGESTION_PROBES = 12
MAX_SUGGESTIONS = 3


class BufferService:
    """Buffer and sequence checks for one gardener's day."""

    def __init__(
        self,
        store: AvailabilityStore,
        working_day: WorkingDay = DEFAULT_WORKING_DAY,
    ) -> None:
        self._store = store
        self.working_day = working_day

    async def get_bookings_for_date(self, gardener_id: str, day: date) -> List[BookingRecord]:
        """Confirmed and in-progress bookings of a gardener, by start hour."""
        try:
            bookings = await self._store.get_confirmed_bookings(gardener_id, day)
        except StorageError as e:
            logger.warning("Could not read bookings of %s on %s: %s", gardener_id, day, e)
            return []
        return sorted(bookings, key=lambda b: b.start_hour)

    @staticmethod
    def needs_buffer(
        existing_booking: BookingRecord,
        new_start_hour: int,
        new_client_id: str,
        day: date,
    ) -> bool:
        return buffer_rules.needs_buffer(existing_booking, new_start_hour, new_client_id, day)

    async def apply_buffer_rules(
        self,
        gardener_id: str,
        day: date,
        client_id: str,
        blocks: Sequence[HourBlock],
    ) -> List[HourBlock]:
        """
        Downgrade blocks that sit right after another client's job.

        If the bookings cannot be read the blocks are returned unchanged.
        """
        try:
            bookings = await self._store.get_confirmed_bookings(gardener_id, day)
        except StorageError as e:
            logger.warning("Buffer rules skipped for %s on %s: %s", gardener_id, day, e)
            return list(blocks)
        return buffer_rules.apply_buffer_rules(blocks, bookings, client_id, day)

    async def can_book_sequence(
        self,
        gardener_id: str,
        day: date,
        start_hour: int,
        duration_hours: int,
        client_id: str,
    ) -> SequenceCheck:
        try:
            bookings = await self._store.get_confirmed_bookings(gardener_id, day)
        except StorageError as e:
            logger.warning("Sequence check failed for %s on %s: %s", gardener_id, day, e)
            return SequenceCheck.rejected(ConflictKind.ERROR, CHECK_ERROR_REASON)
        return buffer_rules.check_sequence(bookings, day, start_hour, duration_hours, client_id)

    async def suggest_alternative_slots(
        self,
        gardener_id: str,
        day: date,
        requested_start_hour: int,
        duration_hours: int,
        client_id: str,
    ) -> List[int]:
        """
        Propose up to three start hours at or after the requested one.

        Scans forward with ``next_available_start`` and admits a candidate
        only if the whole sequence passes ``check_sequence`` and ends by
        closing time.
        """
        try:
            bookings = await self._store.get_confirmed_bookings(gardener_id, day)
        except StorageError as e:
            logger.warning("No suggestions for %s on %s: %s", gardener_id, day, e)
            return []

        suggestions: List[int] = []
        hour = requested_start_hour

        for _ in range(MAX_SUGGESTION_PROBES):
            if len(suggestions) >= MAX_SUGGESTIONS:
                break

            start = buffer_rules.next_available_start(bookings, hour, client_id, self.working_day)
            if start is None or start + duration_hours > self.working_day.close_hour:
                break

            check = buffer_rules.check_sequence(bookings, day, start, duration_hours, client_id)
            if check.can_book:
                suggestions.append(start)
            hour = start + 1

        return suggestions

    async def get_available_blocks(
        self,
        gardener_ids: Sequence[str],
        day: date,
        client_id: str,
        min_bookable_at: DateTime | None = None,
    ) -> Dict[str, List[HourBlock]]:
        """
        Hourly blocks per gardener as the given client would see them.

        Hours starting before ``min_bookable_at`` are reported unavailable.
        A gardener whose availability cannot be read gets an all-unavailable
        day.
        """
        cutoff = first_bookable_hour(day, min_bookable_at, self.working_day)
        result: Dict[str, List[HourBlock]] = {}

        for gardener_id in dict.fromkeys(gardener_ids):
            try:
                hourly = await self._store.get_hourly_availability(gardener_id, day)
            except StorageError as e:
                logger.warning("Could not read availability of %s on %s: %s", gardener_id, day, e)
                hourly = {}

            blocks = buffer_rules.base_blocks(hourly, self.working_day)
            blocks = await self.apply_buffer_rules(gardener_id, day, client_id, blocks)
            for block in blocks:
                if block.hour < cutoff:
                    block.available = False
            result[gardener_id] = blocks

        return result
