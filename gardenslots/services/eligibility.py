"""
Service-area eligibility of gardeners for a client address.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Protocol, Sequence

from ..domain.exceptions import GeocodingError, StorageError, UnsupportedQueryError
from ..domain.geo import haversine_km
from ..domain.models import Coordinates, GardenerProfile, MissingLocationPolicy
from .store import AvailabilityStore

logger = logging.getLogger(__name__)

DEFAULT_WORK_RADIUS_KM = 20.0


class Geocoder(Protocol):
    """Protocol describing the address lookup needed by the resolver."""

    async def geocode(self, address: str) -> Coordinates | None:
        """Return coordinates, or None if the address is unknown."""


class EligibilityResolver:
    """
    Filters gardeners by offered services and distance to the client.

    The client side fails closed (no location, no gardeners) while a gardener
    without a usable location is decided by ``missing_location_policy``.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        geocoder: Geocoder,
        default_work_radius_km: float = DEFAULT_WORK_RADIUS_KM,
        missing_location_policy: MissingLocationPolicy = MissingLocationPolicy.ELIGIBLE,
        distance_fn: Callable[[float, float, float, float], float] = haversine_km,
    ) -> None:
        self._store = store
        self._geocoder = geocoder
        self.default_work_radius_km = default_work_radius_km
        self.missing_location_policy = missing_location_policy
        self._distance = distance_fn
        self._geocode_cache: Dict[str, Coordinates | None] = {}

    async def find_eligible(
        self,
        service_ids: str | Sequence[str],
        client_address: str,
    ) -> List[GardenerProfile]:
        """
        Gardeners offering every requested service within reach of the client.

        Args:
            service_ids: One service id or several; a gardener must offer all
            client_address: Free-text address of the job

        Returns:
            Eligible profiles in store order; empty if the client address
            cannot be located
        """
        requested = [service_ids] if isinstance(service_ids, str) else list(service_ids)

        client_location = await self._locate(client_address)
        if client_location is None:
            logger.warning("Client address %r could not be geocoded", client_address)
            return []

        candidates = await self._candidates(requested)

        eligible: List[GardenerProfile] = []
        for gardener in candidates:
            if await self._within_reach(gardener, client_location):
                eligible.append(gardener)

        logger.debug(
            "%d of %d gardeners eligible for %s at %r",
            len(eligible), len(candidates), requested, client_address,
        )
        return eligible

    async def _candidates(self, service_ids: List[str]) -> List[GardenerProfile]:
        try:
            gardeners = await self._store.list_gardeners(service_ids=service_ids)
            if gardeners:
                return gardeners
            logger.debug("Containment query returned nothing, filtering client-side")
        except UnsupportedQueryError as e:
            logger.warning("Store cannot filter by services (%s), filtering client-side", e)
        except StorageError as e:
            logger.warning("Gardener query failed (%s), retrying without filter", e)

        try:
            everyone = await self._store.list_gardeners()
        except StorageError as e:
            logger.warning("Could not list gardeners: %s", e)
            return []
        return [g for g in everyone if g.offers_all(service_ids)]

    async def _within_reach(self, gardener: GardenerProfile, client: Coordinates) -> bool:
        location = await self._locate(gardener.address) if gardener.address else None

        if location is None:
            keep = self.missing_location_policy == MissingLocationPolicy.ELIGIBLE
            logger.debug(
                "Gardener %s has no usable location, %s by policy",
                gardener.user_id, "kept" if keep else "dropped",
            )
            return keep

        radius = gardener.effective_radius_km(self.default_work_radius_km)
        distance = self._distance(client.lat, client.lng, location.lat, location.lng)
        logger.debug(
            "Gardener %s is %.2f km away (radius %.2f km)", gardener.user_id, distance, radius
        )
        return distance <= radius

    async def _locate(self, address: str | None) -> Coordinates | None:
        if not address or not address.strip():
            return None
        if address in self._geocode_cache:
            return self._geocode_cache[address]

        try:
            location = await self._geocoder.geocode(address)
        except GeocodingError as e:
            # Transport failures are retried on the next lookup
            logger.warning("Geocoding %r failed: %s", address, e)
            return None

        self._geocode_cache[address] = location
        return location
