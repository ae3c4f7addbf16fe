"""
Tests for AvailabilityService.
"""

import asyncio
from datetime import date

import pytest

from gardenslots.adapters.memory_store import InMemoryAvailabilityStore
from gardenslots.domain.exceptions import StorageError
from gardenslots.services.availability_service import AvailabilityService

DAY = date(2024, 6, 10)


class BrokenStore:
    """Store stub failing every call."""

    async def get_hourly_availability(self, gardener_id, day):
        raise StorageError("offline")

    async def get_availability_range(self, gardener_id, start, end):
        raise StorageError("offline")

    async def set_hourly_availability(self, gardener_id, day, hours):
        raise StorageError("offline")


class TestAvailabilityService:
    """Tests for availability editing."""

    def test_hourly_map_is_normalised(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, [9, 10])
        service = AvailabilityService(store)

        hourly = asyncio.run(service.get_hourly_availability("g1", DAY))

        assert list(hourly) == list(range(8, 20))
        assert [h for h, free in hourly.items() if free] == [9, 10]

    def test_set_availability_replaces_day(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, [8, 9, 10])
        service = AvailabilityService(store)

        asyncio.run(service.set_availability("g1", "2024-06-10", [14, 15, 14]))

        hourly = asyncio.run(store.get_hourly_availability("g1", DAY))
        assert hourly == {14: True, 15: True}

    def test_set_availability_outside_day_rejected(self):
        service = AvailabilityService(InMemoryAvailabilityStore())

        with pytest.raises(ValueError, match="outside the working day"):
            asyncio.run(service.set_availability("g1", DAY, [7, 8]))
        with pytest.raises(ValueError):
            asyncio.run(service.set_availability("g1", DAY, [20]))

    def test_default_availability(self):
        store = InMemoryAvailabilityStore()
        service = AvailabilityService(store)

        asyncio.run(service.set_default_availability("g1", DAY))

        assert sorted(asyncio.run(store.get_hourly_availability("g1", DAY))) == list(range(8, 18))

    def test_weekly_availability(self):
        store = InMemoryAvailabilityStore()
        service = AvailabilityService(store)

        written = asyncio.run(service.set_weekly_availability(
            "g1", DAY, {"2024-06-12": [9, 10], DAY: [16]}
        ))

        assert written == [DAY, date(2024, 6, 12)]
        assert asyncio.run(service.get_available_dates("g1", DAY, date(2024, 6, 16))) == written

    def test_weekly_availability_outside_week_rejected(self):
        service = AvailabilityService(InMemoryAvailabilityStore())

        with pytest.raises(ValueError, match="not in the week"):
            asyncio.run(service.set_weekly_availability("g1", DAY, {date(2024, 6, 17): [9]}))

    def test_block_and_release(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(8, 20))
        service = AvailabilityService(store)

        asyncio.run(service.block_hours("g1", DAY, [10, 11]))
        assert not asyncio.run(service.is_available("g1", DAY, 10))

        asyncio.run(service.release_hours("g1", DAY, [10]))
        assert asyncio.run(service.is_available("g1", DAY, 10))
        assert not asyncio.run(service.is_available("g1", DAY, 11))

    def test_is_available_outside_day(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(8, 20))

        assert not asyncio.run(AvailabilityService(store).is_available("g1", DAY, 20))

    def test_available_dates_skip_fully_blocked_days(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, [9])
        store.seed_availability("g1", date(2024, 6, 11), [9])
        service = AvailabilityService(store)
        asyncio.run(service.block_hours("g1", DAY, [9]))

        assert asyncio.run(service.get_available_dates("g1", DAY, date(2024, 6, 30))) == [date(2024, 6, 11)]


class TestAvailabilityServiceFailures:
    """Reads degrade, writes propagate."""

    def test_reads_collapse_to_empty(self):
        service = AvailabilityService(BrokenStore())

        assert not any(asyncio.run(service.get_hourly_availability("g1", DAY)).values())
        assert asyncio.run(service.get_available_dates("g1", DAY, DAY)) == []
        assert not asyncio.run(service.is_available("g1", DAY, 9))

    def test_writes_propagate(self):
        service = AvailabilityService(BrokenStore())

        with pytest.raises(StorageError):
            asyncio.run(service.set_availability("g1", DAY, [9]))
