"""
Tests for the store-backed BufferService.
"""

import asyncio
from datetime import date

import pendulum

from gardenslots.adapters.memory_store import InMemoryAvailabilityStore
from gardenslots.domain.buffer_rules import base_blocks
from gardenslots.domain.exceptions import StorageError
from gardenslots.domain.models import BookingRecord, BookingStatus, ConflictKind
from gardenslots.services.buffer_service import BufferService

DAY = date(2024, 6, 10)


class FailingStore:
    """Store stub whose reads always fail."""

    async def get_confirmed_bookings(self, gardener_id, day):
        raise StorageError("connection reset")

    async def get_hourly_availability(self, gardener_id, day):
        raise StorageError("connection reset")


def _store_with_booking(client_id: str = "A", start: int = 10, duration: int = 2) -> InMemoryAvailabilityStore:
    store = InMemoryAvailabilityStore()
    # Accepted bookings have their hours blocked in the calendar
    store.seed_availability("g1", DAY, [h for h in range(8, 20) if not start <= h < start + duration])
    store.add_booking(
        BookingRecord(
            id="b1",
            client_id=client_id,
            gardener_id="g1",
            service_id="lawn",
            date=DAY,
            start_hour=start,
            duration_hours=duration,
            status=BookingStatus.CONFIRMED,
        )
    )
    return store


class TestBufferService:
    """Tests for BufferService over the in-memory store."""

    def test_get_bookings_for_date_only_occupying(self):
        store = _store_with_booking()
        store.add_booking(
            BookingRecord("b2", "B", "g1", "lawn", DAY, 8, 1, status=BookingStatus.PENDING)
        )
        service = BufferService(store)

        bookings = asyncio.run(service.get_bookings_for_date("g1", DAY))

        assert [b.id for b in bookings] == ["b1"]

    def test_can_book_sequence_buffer_and_same_client(self):
        """Scenario: B is rejected at 12:00 after A's 10-12 job, A is allowed."""
        service = BufferService(_store_with_booking())

        other = asyncio.run(service.can_book_sequence("g1", DAY, 12, 1, "B"))
        same = asyncio.run(service.can_book_sequence("g1", DAY, 12, 1, "A"))

        assert not other.can_book
        assert other.conflict == ConflictKind.BUFFER
        assert other.reason == "Se requiere un intervalo entre clientes diferentes"
        assert same.can_book

    def test_suggest_alternative_slots(self):
        """Suggestions skip the booking and its buffer hour, at most three."""
        service = BufferService(_store_with_booking())

        suggestions = asyncio.run(service.suggest_alternative_slots("g1", DAY, 10, 2, "B"))

        assert suggestions == [13, 14, 15]

    def test_suggestions_never_cross_closing_time(self):
        service = BufferService(_store_with_booking())

        suggestions = asyncio.run(service.suggest_alternative_slots("g1", DAY, 17, 2, "B"))

        assert suggestions == [17, 18]
        assert all(start + 2 <= 20 for start in suggestions)

    def test_get_available_blocks_with_notice(self):
        """Hours before the notice cutoff and the buffer hour are unavailable."""
        service = BufferService(_store_with_booking())
        cutoff = pendulum.datetime(2024, 6, 10, 8, 15, tz="Europe/Madrid")

        blocks = asyncio.run(service.get_available_blocks(["g1", "g1"], DAY, "B", cutoff))

        assert list(blocks) == ["g1"]
        available = [b.hour for b in blocks["g1"] if b.available]
        assert available == [9, 13, 14, 15, 16, 17, 18, 19]
        assert next(b for b in blocks["g1"] if b.hour == 12).has_buffer


class TestBufferServiceDegraded:
    """Read failures degrade instead of raising."""

    def test_bookings_collapse_to_empty(self):
        assert asyncio.run(BufferService(FailingStore()).get_bookings_for_date("g1", DAY)) == []

    def test_apply_buffer_rules_returns_blocks_unchanged(self):
        blocks = base_blocks({9: True})

        result = asyncio.run(BufferService(FailingStore()).apply_buffer_rules("g1", DAY, "B", blocks))

        assert [(b.hour, b.available) for b in result] == [(b.hour, b.available) for b in blocks]

    def test_can_book_sequence_reports_error(self):
        check = asyncio.run(BufferService(FailingStore()).can_book_sequence("g1", DAY, 9, 1, "B"))

        assert not check.can_book
        assert check.conflict == ConflictKind.ERROR
        assert check.reason == "Error al verificar disponibilidad"

    def test_suggestions_empty(self):
        assert asyncio.run(BufferService(FailingStore()).suggest_alternative_slots("g1", DAY, 9, 1, "B")) == []

    def test_blocks_all_unavailable(self):
        blocks = asyncio.run(BufferService(FailingStore()).get_available_blocks(["g1"], DAY, "B"))

        assert not any(b.available for b in blocks["g1"])
