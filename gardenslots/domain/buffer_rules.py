"""
Buffer rules between jobs of different clients.

A gardener may not start a job for one client in the hour immediately
after another client's job ends. The same client may book back-to-back.
Only the leading edge of a new request is buffer-checked; a booking that
starts right when the new request ends is not introspected.

Pure functions only - bookings are passed in, nothing is fetched here.
"""

from datetime import date
from typing import Iterable, List, Mapping, Sequence

from .models import (
    BookingRecord,
    ConflictKind,
    DEFAULT_WORKING_DAY,
    HourBlock,
    SequenceCheck,
    WorkingDay,
)

DIRECT_CONFLICT_REASON = "Conflicto directo en la hora {hour}:00"
BUFFER_REASON = "Se requiere un intervalo entre clientes diferentes"
CHECK_ERROR_REASON = "Error al verificar disponibilidad"


def needs_buffer(
    existing_booking: BookingRecord,
    new_start_hour: int,
    new_client_id: str,
    day: date,
) -> bool:
    """
    Check whether a new job at ``new_start_hour`` must leave a gap after
    ``existing_booking``.

    True only when the existing booking is on the same date, belongs to a
    different client, and ends exactly at ``new_start_hour``.
    """
    if existing_booking.client_id == new_client_id:
        return False

    if existing_booking.date != day:
        return False

    return existing_booking.end_hour == new_start_hour


def base_blocks(
    hourly_availability: Mapping[int, bool],
    working_day: WorkingDay = DEFAULT_WORKING_DAY,
) -> List[HourBlock]:
    """Build one block per working hour; a missing hour is unavailable."""
    return [
        HourBlock(hour=hour, available=bool(hourly_availability.get(hour, False)))
        for hour in working_day.hours()
    ]


def apply_buffer_rules(
    blocks: Sequence[HourBlock],
    bookings: Sequence[BookingRecord],
    client_id: str,
    day: date,
) -> List[HourBlock]:
    """
    Downgrade every block that sits right after another client's job.

    Returns new blocks; the input sequence is left untouched.
    """
    if not bookings:
        return [HourBlock(b.hour, b.available, b.has_buffer) for b in blocks]

    adjusted: List[HourBlock] = []
    for block in blocks:
        has_buffer = any(
            needs_buffer(booking, block.hour, client_id, day) for booking in bookings
        )
        adjusted.append(
            HourBlock(
                hour=block.hour,
                available=block.available and not has_buffer,
                has_buffer=has_buffer,
            )
        )
    return adjusted


def check_sequence(
    bookings: Sequence[BookingRecord],
    day: date,
    start_hour: int,
    duration_hours: int,
    client_id: str,
) -> SequenceCheck:
    """
    Test whether ``duration_hours`` contiguous hours from ``start_hour``
    can be booked by ``client_id``.

    Every hour is checked for a direct overlap with any booking, whatever
    its client. The first hour alone is also checked for a buffer conflict.
    """
    for offset in range(duration_hours):
        hour = start_hour + offset

        if any(booking.occupies(hour) for booking in bookings):
            return SequenceCheck.rejected(
                ConflictKind.DIRECT, DIRECT_CONFLICT_REASON.format(hour=hour)
            )

        if offset == 0 and any(
            needs_buffer(booking, hour, client_id, day) for booking in bookings
        ):
            return SequenceCheck.rejected(ConflictKind.BUFFER, BUFFER_REASON)

    return SequenceCheck.ok()


def next_available_start(
    bookings: Iterable[BookingRecord],
    from_hour: int,
    client_id: str,
    working_day: WorkingDay = DEFAULT_WORKING_DAY,
) -> int | None:
    """
    First hour at or after ``from_hour`` that is neither occupied nor the
    buffer hour after another client's job. Returns None if the day is full.
    """
    ordered = sorted(bookings, key=lambda b: b.start_hour)

    for hour in range(max(from_hour, working_day.open_hour), working_day.close_hour):
        blocked = False
        for booking in ordered:
            if booking.occupies(hour):
                blocked = True
                break
            if booking.client_id != client_id and booking.end_hour == hour:
                blocked = True
                break
        if not blocked:
            return hour

    return None
