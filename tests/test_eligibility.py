"""
Tests for EligibilityResolver.
"""

import asyncio

import pytest

from gardenslots.adapters.geocoding import StaticGeocoder
from gardenslots.adapters.memory_store import InMemoryAvailabilityStore
from gardenslots.domain.exceptions import GeocodingError, StorageError
from gardenslots.domain.geo import haversine_km
from gardenslots.domain.models import GardenerProfile, MissingLocationPolicy
from gardenslots.services.eligibility import EligibilityResolver

CLIENT = "Calle Mayor 1, Madrid"
CLIENT_COORDS = (40.4168, -3.7038)


class FailingGeocoder:
    """Geocoder stub that always fails at the transport level."""

    async def geocode(self, address):
        raise GeocodingError("quota exceeded")


class FlakyGeocoder:
    """Geocoder stub that fails once, then answers from a static table."""

    def __init__(self, locations):
        self._inner = StaticGeocoder(locations)
        self.calls = 0

    async def geocode(self, address):
        self.calls += 1
        if self.calls == 1:
            raise GeocodingError("timeout")
        return await self._inner.geocode(address)


class BrokenStore:
    """Store stub whose gardener listing always fails."""

    async def list_gardeners(self, service_ids=None, only_available=True):
        raise StorageError("timeout")


def _geocoder() -> StaticGeocoder:
    return StaticGeocoder({
        CLIENT: CLIENT_COORDS,
        "Near": (40.4381, -3.6762),        # ~3.9 km
        "Toledo": (39.8581, -4.0226),      # ~67 km
        "Edge": (40.5, -3.7038),
    })


def _store(*profiles: GardenerProfile, supports_containment: bool = True) -> InMemoryAvailabilityStore:
    store = InMemoryAvailabilityStore(supports_containment=supports_containment)
    for profile in profiles:
        store.add_gardener(profile)
    return store


class TestFindEligible:
    """Tests for find_eligible."""

    def test_filters_by_distance_and_services(self):
        store = _store(
            GardenerProfile("near", address="Near", service_ids=("lawn", "hedges")),
            GardenerProfile("far", address="Toledo", service_ids=("lawn",)),
            GardenerProfile("wrong-service", address="Near", service_ids=("palms",)),
            GardenerProfile("off", address="Near", service_ids=("lawn",), is_available=False),
        )
        resolver = EligibilityResolver(store, _geocoder())

        result = asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert [g.user_id for g in result] == ["near"]

    def test_gardener_radius_overrides_default(self):
        store = _store(GardenerProfile("far", address="Toledo", work_radius_km=80, service_ids=("lawn",)))
        resolver = EligibilityResolver(store, _geocoder())

        assert [g.user_id for g in asyncio.run(resolver.find_eligible(["lawn"], CLIENT))] == ["far"]

    def test_requires_all_services(self):
        store = _store(
            GardenerProfile("both", address="Near", service_ids=("lawn", "hedges")),
            GardenerProfile("one", address="Near", service_ids=("lawn",)),
        )
        resolver = EligibilityResolver(store, _geocoder())

        result = asyncio.run(resolver.find_eligible(["lawn", "hedges"], CLIENT))

        assert [g.user_id for g in result] == ["both"]

    def test_gardener_that_fails_to_geocode_is_kept(self):
        """A gardener whose address cannot be located stays eligible."""
        store = _store(
            GardenerProfile("near", address="Near", service_ids=("lawn",)),
            GardenerProfile("unknown", address="Somewhere unmapped", service_ids=("lawn",)),
            GardenerProfile("no-address", address=None, service_ids=("lawn",)),
        )
        resolver = EligibilityResolver(store, _geocoder())

        result = asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert [g.user_id for g in result] == ["near", "unknown", "no-address"]

    def test_ineligible_policy_drops_unlocated_gardeners(self):
        store = _store(
            GardenerProfile("near", address="Near", service_ids=("lawn",)),
            GardenerProfile("unknown", address="Somewhere unmapped", service_ids=("lawn",)),
        )
        resolver = EligibilityResolver(
            store, _geocoder(), missing_location_policy=MissingLocationPolicy.INELIGIBLE
        )

        result = asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert [g.user_id for g in result] == ["near"]

    @pytest.mark.parametrize("geocoder", [StaticGeocoder({}), FailingGeocoder()])
    def test_client_address_not_found_returns_empty(self, geocoder):
        """No client location means no gardeners, whatever the store holds."""
        store = _store(GardenerProfile("anyone", address=None, service_ids=("lawn",)))
        resolver = EligibilityResolver(store, geocoder)

        assert asyncio.run(resolver.find_eligible("lawn", "Nowhere 0")) == []

    def test_blank_client_address_returns_empty(self):
        store = _store(GardenerProfile("anyone", address=None, service_ids=("lawn",)))
        resolver = EligibilityResolver(store, _geocoder())

        assert asyncio.run(resolver.find_eligible("lawn", "   ")) == []

    def test_falls_back_when_containment_unsupported(self):
        store = _store(
            GardenerProfile("near", address="Near", service_ids=("lawn", "hedges")),
            GardenerProfile("one", address="Near", service_ids=("hedges",)),
            supports_containment=False,
        )
        resolver = EligibilityResolver(store, _geocoder())

        result = asyncio.run(resolver.find_eligible(["lawn"], CLIENT))

        assert [g.user_id for g in result] == ["near"]

    def test_store_failure_returns_empty(self):
        resolver = EligibilityResolver(BrokenStore(), _geocoder())

        assert asyncio.run(resolver.find_eligible("lawn", CLIENT)) == []

    def test_addresses_geocoded_once(self):
        store = _store(
            GardenerProfile("a", address="Near", service_ids=("lawn",)),
            GardenerProfile("b", address="Near", service_ids=("lawn",)),
        )
        geocoder = _geocoder()
        resolver = EligibilityResolver(store, geocoder)

        asyncio.run(resolver.find_eligible("lawn", CLIENT))
        asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert geocoder.lookups == [CLIENT, "Near"]

    def test_transient_geocoding_failure_not_remembered(self):
        """A failed lookup is retried instead of being cached as not found."""
        store = _store(GardenerProfile("near", address="Near", service_ids=("lawn",)))
        geocoder = FlakyGeocoder({CLIENT: CLIENT_COORDS, "Near": (40.4381, -3.6762)})
        resolver = EligibilityResolver(store, geocoder)

        first = asyncio.run(resolver.find_eligible("lawn", CLIENT))
        second = asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert first == []
        assert [g.user_id for g in second] == ["near"]


class TestRadiusBoundary:
    """The work radius is inclusive."""

    def _resolver(self, distance_km: float) -> EligibilityResolver:
        store = _store(GardenerProfile("g1", address="Near", work_radius_km=15.0, service_ids=("lawn",)))
        return EligibilityResolver(store, _geocoder(), distance_fn=lambda *_: distance_km)

    def test_distance_equal_to_radius_is_eligible(self):
        assert len(asyncio.run(self._resolver(15.0).find_eligible("lawn", CLIENT))) == 1

    def test_distance_just_beyond_radius_is_not(self):
        assert asyncio.run(self._resolver(15.01).find_eligible("lawn", CLIENT)) == []

    def test_boundary_with_real_distance(self):
        distance = haversine_km(*CLIENT_COORDS, 40.5, -3.7038)
        store = _store(
            GardenerProfile("exact", address="Edge", work_radius_km=distance, service_ids=("lawn",)),
            GardenerProfile("short", address="Edge", work_radius_km=distance - 0.01, service_ids=("lawn",)),
        )
        resolver = EligibilityResolver(store, _geocoder())

        result = asyncio.run(resolver.find_eligible("lawn", CLIENT))

        assert [g.user_id for g in result] == ["exact"]


def test_haversine_known_distance():
    """Madrid to Toledo is roughly 67 km as the crow flies."""
    assert haversine_km(*CLIENT_COORDS, 39.8581, -4.0226) == pytest.approx(67, abs=2)
    assert haversine_km(*CLIENT_COORDS, *CLIENT_COORDS) == 0
