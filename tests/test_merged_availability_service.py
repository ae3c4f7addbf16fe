"""
Tests for MergedAvailabilityService.
"""

import asyncio
from datetime import date, timedelta
from typing import List

import pendulum

from gardenslots.adapters.memory_store import InMemoryAvailabilityStore
from gardenslots.domain.exceptions import StorageError
from gardenslots.domain.models import BookingRecord, BookingStatus, RecurringSettings
from gardenslots.services.merged_availability import MergedAvailabilityService

DAY = date(2024, 6, 10)
TZ = "Europe/Madrid"


def _clock(*args):
    instant = pendulum.datetime(*args, tz=TZ) if args else pendulum.datetime(2024, 6, 1, 9, tz=TZ)
    return lambda: instant


class RecordingStore(InMemoryAvailabilityStore):
    """In-memory store that records which dates were read."""

    def __init__(self):
        super().__init__()
        self.reads: List[date] = []

    async def get_hourly_availability(self, gardener_id, day):
        self.reads.append(day)
        return await super().get_hourly_availability(gardener_id, day)


class SlowStore(InMemoryAvailabilityStore):
    """In-memory store where one gardener never answers in time."""

    async def get_hourly_availability(self, gardener_id, day):
        if gardener_id == "slow":
            await asyncio.sleep(1)
        return await super().get_hourly_availability(gardener_id, day)


class BrokenGardenerStore(InMemoryAvailabilityStore):
    async def get_hourly_availability(self, gardener_id, day):
        if gardener_id == "broken":
            raise StorageError("row level security")
        return await super().get_hourly_availability(gardener_id, day)


def _service(store, **kwargs) -> MergedAvailabilityService:
    kwargs.setdefault("clock", _clock())
    return MergedAvailabilityService(store, **kwargs)


class TestComputeMergedSlots:
    """Tests for compute_merged_slots."""

    def test_single_gardener_free_day(self):
        """Availability 9-17 with no bookings yields 2h starts 9..15."""
        store = InMemoryAvailabilityStore()
        store.seed_availability("G", DAY, range(9, 17))

        slots = asyncio.run(_service(store).compute_merged_slots(["G"], DAY, "C", 2))

        assert [s.start_hour for s in slots] == [9, 10, 11, 12, 13, 14, 15]
        assert all(s.gardener_ids == ["G"] for s in slots)
        assert all(s.end_hour == s.start_hour + 2 for s in slots)

    def test_merges_in_input_order(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, [9, 10])
        store.seed_availability("g2", DAY, [10, 11])

        slots = asyncio.run(_service(store).compute_merged_slots(["g2", "g1"], DAY, "C", 1))

        assert [(s.start_hour, s.gardener_ids) for s in slots] == [
            (9, ["g1"]),
            (10, ["g2", "g1"]),
            (11, ["g2"]),
        ]

    def test_duplicate_gardener_ids_collapsed(self):
        """A gardener never appears twice under one start hour."""
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(8, 20))

        slots = asyncio.run(_service(store).compute_merged_slots(["g1", "g1", "g1"], DAY, "C", 1))

        assert all(s.gardener_ids == ["g1"] for s in slots)

    def test_buffer_applies_per_client(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, [8, 9, 12, 13])
        store.add_booking(
            BookingRecord("b1", "A", "g1", "lawn", DAY, 10, 2, status=BookingStatus.CONFIRMED)
        )
        service = _service(store)

        other = asyncio.run(service.compute_merged_slots(["g1"], DAY, "B", 1))
        same = asyncio.run(service.compute_merged_slots(["g1"], DAY, "A", 1))

        assert [s.start_hour for s in other] == [8, 9, 13]
        assert [s.start_hour for s in same] == [8, 9, 12, 13]

    def test_invalid_duration_returns_empty(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(8, 20))
        service = _service(store)

        assert asyncio.run(service.compute_merged_slots(["g1"], DAY, "C", 0)) == []
        assert asyncio.run(service.compute_merged_slots(["g1"], DAY, "C", 13)) == []
        assert len(asyncio.run(service.compute_merged_slots(["g1"], DAY, "C", 12))) == 1

    def test_timed_out_gardener_contributes_nothing(self):
        store = SlowStore()
        store.seed_availability("slow", DAY, range(8, 20))
        store.seed_availability("fast", DAY, [9])

        service = _service(store, merge_timeout_seconds=0.05)
        slots = asyncio.run(service.compute_merged_slots(["slow", "fast"], DAY, "C", 1))

        assert [(s.start_hour, s.gardener_ids) for s in slots] == [(9, ["fast"])]

    def test_failing_gardener_contributes_nothing(self):
        store = BrokenGardenerStore()
        store.seed_availability("ok", DAY, [9])

        slots = asyncio.run(_service(store).compute_merged_slots(["broken", "ok"], DAY, "C", 1))

        assert [(s.start_hour, s.gardener_ids) for s in slots] == [(9, ["ok"])]

    def test_min_notice_hides_early_hours(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(9, 17))
        service = _service(store, clock=_clock(2024, 6, 10, 10, 30), min_notice_hours=2)

        slots = asyncio.run(service.compute_merged_slots(["g1"], DAY, "C", 1))

        assert [s.start_hour for s in slots] == [13, 14, 15, 16]

    def test_gardener_notice_setting_overrides_default(self):
        store = InMemoryAvailabilityStore()
        store.seed_availability("g1", DAY, range(9, 17))
        store.seed_settings(RecurringSettings("g1", min_notice_hours=24))
        service = _service(store, clock=_clock(2024, 6, 9, 12))

        slots = asyncio.run(service.compute_merged_slots(["g1"], DAY, "C", 1))

        assert [s.start_hour for s in slots] == [12, 13, 14, 15, 16]


class TestNextAvailableDays:
    """Tests for next_available_days."""

    def _store(self, start: date, offsets) -> RecordingStore:
        store = RecordingStore()
        for offset in offsets:
            store.seed_availability("g1", start + timedelta(days=offset), [10, 11])
        return store

    def test_returns_days_with_slots_in_order(self):
        """Only days 3, 5 and 10 have slots."""
        store = self._store(DAY, [3, 5, 10])

        days = asyncio.run(
            _service(store).next_available_days(["g1"], DAY, "C", 1, max_days_to_search=14, max_results=7)
        )

        assert [d.date for d in days] == [DAY + timedelta(days=n) for n in (3, 5, 10)]
        assert all(d.slots for d in days)

    def test_stops_at_max_results(self):
        store = self._store(DAY, [3, 5, 10, 12])

        days = asyncio.run(
            _service(store).next_available_days(["g1"], DAY, "C", 1, max_days_to_search=14, max_results=3)
        )

        assert len(days) == 3
        assert max(store.reads) == DAY + timedelta(days=10)

    def test_dates_strictly_ascending_from_start(self):
        store = self._store(DAY, range(14))

        days = asyncio.run(_service(store).next_available_days(["g1"], DAY, "C", 1))

        dates = [d.date for d in days]
        assert len(dates) == 7
        assert dates[0] >= DAY
        assert all(a < b for a, b in zip(dates, dates[1:]))

    def test_empty_horizon(self):
        store = self._store(DAY, [20])

        assert asyncio.run(_service(store).next_available_days(["g1"], DAY, "C", 1)) == []

    def test_zero_limits_return_nothing(self):
        """An explicit zero is honoured rather than replaced by the default."""
        store = self._store(DAY, [0, 1])
        service = _service(store)

        assert asyncio.run(service.next_available_days(["g1"], DAY, "C", 1, max_days_to_search=0)) == []
        assert asyncio.run(service.next_available_days(["g1"], DAY, "C", 1, max_results=0)) == []
        assert store.reads == []
