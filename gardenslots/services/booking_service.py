"""
Broadcast booking requests and their first-accept-wins resolution.

A client's job is sent to several gardeners as one pending row each. The
first gardener to accept confirms their row and cancels the siblings in a
single store transaction; pending rows older than their expiry are moved
to ``expired`` whenever pending requests are read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    BookingAlreadyResolvedError,
    BookingNotFoundError,
    StorageError,
)
from ..domain.models import (
    BookingRecord,
    BookingStatus,
    DEFAULT_WORKING_DAY,
    JobSpec,
    PENDING_TTL_HOURS,
    WorkingDay,
)
from .store import AvailabilityStore

logger = logging.getLogger(__name__)


@dataclass
class AcceptResult:
    """The confirmed booking and the hours actually blocked for it."""
    booking: BookingRecord
    blocked_hours: List[int] = field(default_factory=list)
    margin_hours: List[int] = field(default_factory=list)
    block_errors: List[str] = field(default_factory=list)


class BookingService:
    """Booking request lifecycle on top of an ``AvailabilityStore``."""

    def __init__(
        self,
        store: AvailabilityStore,
        clock: Callable[[], DateTime] | None = None,
        timezone: str = "Europe/Madrid",
        pending_ttl_hours: int = PENDING_TTL_HOURS,
        trailing_margin_hours: int = 1,
        working_day: WorkingDay = DEFAULT_WORKING_DAY,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: pendulum.now(timezone))
        self.pending_ttl_hours = pending_ttl_hours
        self.trailing_margin_hours = trailing_margin_hours
        self.working_day = working_day

    async def broadcast_booking_request(
        self,
        job: JobSpec,
        gardener_ids: Sequence[str],
    ) -> List[BookingRecord]:
        """
        Create one pending booking per gardener for the same job.

        All rows share the job fields and one expiry instant.

        Raises:
            ValueError: If no gardener is given or the job leaves the working day
            StorageError: If the rows cannot be inserted
        """
        targets = list(dict.fromkeys(gardener_ids))
        if not targets:
            raise ValueError("A booking request needs at least one gardener")
        if not self.working_day.fits(job.start_hour, job.duration_hours):
            raise ValueError(
                f"Job {job.start_hour}:00 +{job.duration_hours}h does not fit the working day"
            )

        now = self._clock()
        expires_at = now.add(hours=self.pending_ttl_hours)

        bookings = await self._store.create_pending_bookings(job, targets, expires_at, now)
        logger.info(
            "Broadcast job of client %s on %s %s:00 to %d gardener(s), expires %s",
            job.client_id, job.date, job.start_hour, len(bookings),
            expires_at.to_iso8601_string(),
        )
        return bookings

    async def list_pending_requests(self, gardener_id: str) -> List[BookingRecord]:
        """
        Pending requests of a gardener, oldest job first.

        Requests past their expiry are marked expired and left out.
        """
        try:
            pending = await self._store.list_pending_bookings(gardener_id)
        except StorageError as e:
            logger.warning("Could not read pending requests of %s: %s", gardener_id, e)
            return []

        live = await self._expire(gardener_id, pending)
        return sorted(live, key=lambda b: (b.date, b.start_hour))

    async def accept_booking(self, booking_id: str, gardener_id: str) -> AcceptResult:
        """
        Confirm a pending request and cancel the other gardeners' copies.

        Once confirmed, the job hours are blocked and then, as a separate
        write, the margin hour after the job. A failed block write is
        logged and reported in the result; the confirmation stands.

        Raises:
            BookingNotFoundError: If the booking does not exist for this gardener
            BookingAlreadyResolvedError: If the request is no longer pending
        """
        booking = await self._store.get_booking(booking_id)
        if booking is None or booking.gardener_id != gardener_id:
            raise BookingNotFoundError(f"Booking {booking_id} not found for gardener {gardener_id}")

        now = self._clock()
        await self._expire(gardener_id, [booking], now)

        confirmed = await self._store.confirm_and_cancel_siblings(booking_id, gardener_id, now)
        if not confirmed:
            raise BookingAlreadyResolvedError(
                f"Booking {booking_id} is no longer pending and cannot be accepted"
            )
        logger.info("Gardener %s accepted booking %s", gardener_id, booking_id)

        result = AcceptResult(booking=(await self._store.get_booking(booking_id)) or booking)

        job_hours = booking.hours()
        try:
            await self._store.block_hours(gardener_id, booking.date, job_hours)
            result.blocked_hours = job_hours
        except StorageError as e:
            logger.error("Could not block hours %s of booking %s: %s", job_hours, booking_id, e)
            result.block_errors.append(str(e))

        margin = [
            h for h in range(booking.end_hour, booking.end_hour + self.trailing_margin_hours)
            if self.working_day.contains(h)
        ]
        if margin:
            try:
                await self._store.block_hours(gardener_id, booking.date, margin)
                result.margin_hours = margin
            except StorageError as e:
                logger.error("Could not block margin %s of booking %s: %s", margin, booking_id, e)
                result.block_errors.append(str(e))

        return result

    async def reject_booking(self, booking_id: str, gardener_id: str) -> None:
        """
        Decline a pending request.

        Raises:
            BookingAlreadyResolvedError: If the request is no longer pending
        """
        changed = await self._store.update_booking_status(
            booking_id, gardener_id, BookingStatus.CANCELLED, expected=BookingStatus.PENDING
        )
        if not changed:
            raise BookingAlreadyResolvedError(f"Booking {booking_id} cannot be rejected")
        logger.info("Gardener %s rejected booking %s", gardener_id, booking_id)

    async def cancel_booking(self, booking_id: str) -> BookingRecord:
        """
        Cancel a confirmed booking and give its job hours back.

        The margin hour stays blocked.

        Raises:
            BookingNotFoundError: If the booking does not exist
            BookingAlreadyResolvedError: If the booking is not confirmed
        """
        booking = await self._store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")

        changed = await self._store.update_booking_status(
            booking_id, None, BookingStatus.CANCELLED, expected=BookingStatus.CONFIRMED
        )
        if not changed:
            raise BookingAlreadyResolvedError(
                f"Booking {booking_id} is {booking.status.value} and cannot be cancelled"
            )

        await self._store.release_hours(booking.gardener_id, booking.date, booking.hours())
        logger.info("Cancelled booking %s and released %s", booking_id, booking.hours())
        return (await self._store.get_booking(booking_id)) or booking

    async def _expire(
        self,
        gardener_id: str,
        bookings: Sequence[BookingRecord],
        now: DateTime | None = None,
    ) -> List[BookingRecord]:
        """Mark expired pending rows; returns the rows still live."""
        now = now or self._clock()
        expired = [b for b in bookings if b.is_expired(now)]
        if expired:
            try:
                count = await self._store.mark_expired([b.id for b in expired], gardener_id)
                logger.info("Expired %d pending request(s) of %s", count, gardener_id)
            except StorageError as e:
                logger.warning("Could not mark expired requests of %s: %s", gardener_id, e)

        expired_ids = {b.id for b in expired}
        return [
            b for b in bookings
            if b.id not in expired_ids and b.status == BookingStatus.PENDING
        ]
