"""
Core business logic for merging per-gardener availability into slots.

Pure domain logic without any external dependencies (no store access,
no geocoding, no I/O): the service layer fetches each gardener's hourly
availability and bookings, this module turns them into merged slots.
"""

from datetime import date
from typing import Dict, List, Mapping, Sequence

from .buffer_rules import apply_buffer_rules, check_sequence
from .models import BookingRecord, DEFAULT_WORKING_DAY, HourBlock, MergedSlot, WorkingDay


class SlotMerger:
    """
    Computes merged slots for one date and one duration.

    Algorithm:
    1. Apply buffer rules to each gardener's hourly blocks
    2. For every start hour 8..(20 - duration), keep it if every hour of
       the sequence is available and the sequence check admits it
    3. Group start hours across gardeners, preserving gardener order
    4. Return slots sorted by start hour
    """

    def __init__(self, working_day: WorkingDay = DEFAULT_WORKING_DAY):
        self.working_day = working_day

    def candidate_starts(self, duration_hours: int) -> range:
        """All start hours for which the job still ends by closing time."""
        if duration_hours < 1:
            return range(0)
        return range(
            self.working_day.open_hour,
            self.working_day.close_hour - duration_hours + 1,
        )

    def bookable_starts(
        self,
        blocks: Sequence[HourBlock],
        bookings: Sequence[BookingRecord],
        day: date,
        client_id: str,
        duration_hours: int,
    ) -> List[int]:
        """
        Start hours at which one gardener can take the whole job.

        Args:
            blocks: The gardener's base hourly blocks (before buffer rules)
            bookings: The gardener's confirmed bookings on ``day``
            day: The requested date
            client_id: The requesting client
            duration_hours: Required contiguous duration

        Returns:
            Ascending list of admissible start hours
        """
        buffered = apply_buffer_rules(blocks, bookings, client_id, day)
        available = {block.hour for block in buffered if block.available}

        starts: List[int] = []
        for start in self.candidate_starts(duration_hours):
            sequence = range(start, start + duration_hours)
            if not all(hour in available for hour in sequence):
                continue

            if check_sequence(bookings, day, start, duration_hours, client_id).can_book:
                starts.append(start)

        return starts

    def merge(
        self,
        starts_by_gardener: Mapping[str, Sequence[int]],
        duration_hours: int,
    ) -> List[MergedSlot]:
        """
        Group admissible start hours across gardeners.

        Gardener ids appear under a start hour in the iteration order of
        ``starts_by_gardener`` and never more than once.
        """
        by_start: Dict[int, List[str]] = {}

        for gardener_id, starts in starts_by_gardener.items():
            for start in starts:
                gardeners = by_start.setdefault(start, [])
                if gardener_id not in gardeners:
                    gardeners.append(gardener_id)

        return [
            MergedSlot(
                start_hour=start,
                end_hour=start + duration_hours,
                gardener_ids=gardeners,
            )
            for start, gardeners in sorted(by_start.items())
        ]
