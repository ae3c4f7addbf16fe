"""
Address geocoding adapters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Sequence

import requests

from ..domain.exceptions import GeocodingError
from ..domain.models import Coordinates

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return " ".join((address or "").lower().split())


class GoogleGeocoder:
    """
    Geocoder using the Google Maps Geocoding API.

    Falls back to the Places "find place" endpoint when the geocoder has no
    result, the same order the booking web app uses.
    """

    GEOCODE_ENDPOINT = "https://maps.googleapis.com/maps/api/geocode/json"
    FIND_PLACE_ENDPOINT = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"

    def __init__(self, api_key: str, timeout_seconds: float = 10.0, region: str = "es"):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.region = region

    async def geocode(self, address: str) -> Coordinates | None:
        """
        Resolve an address to coordinates.

        Returns:
            Coordinates, or None if neither endpoint found the address

        Raises:
            GeocodingError: On transport failure or a denied request
        """
        if not normalize_address(address):
            return None
        return await asyncio.to_thread(self._geocode_sync, address)

    def _geocode_sync(self, address: str) -> Coordinates | None:
        data = self._get(self.GEOCODE_ENDPOINT, {
            "address": address,
            "region": self.region,
            "key": self.api_key,
        })
        status = data.get("status")
        if status == "OK" and data.get("results"):
            return self._location(data["results"][0])

        logger.warning("Geocoding failed for %r (%s), trying place search", address, status)

        data = self._get(self.FIND_PLACE_ENDPOINT, {
            "input": address,
            "inputtype": "textquery",
            "fields": "geometry",
            "key": self.api_key,
        })
        status = data.get("status")
        if status == "OK" and data.get("candidates"):
            return self._location(data["candidates"][0])

        if status not in ("ZERO_RESULTS", "NOT_FOUND"):
            raise GeocodingError(f"Place search for {address!r} failed: {status}")
        logger.warning("Place search could not resolve %r (%s)", address, status)
        return None

    def _get(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = requests.get(url, params=params, timeout=self.timeout_seconds)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise GeocodingError(f"Geocoding request failed: {e}") from e
        except ValueError as e:
            raise GeocodingError("Geocoding service returned invalid JSON") from e

    @staticmethod
    def _location(result: Mapping[str, Any]) -> Coordinates:
        try:
            location = result["geometry"]["location"]
            return Coordinates(lat=float(location["lat"]), lng=float(location["lng"]))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Unexpected geocoding payload: {e}") from e


class StaticGeocoder:
    """
    Geocoder backed by a fixed address table.

    Used in mock mode and tests; unknown addresses resolve to None.
    """

    def __init__(self, locations: Mapping[str, Sequence[float]] | None = None):
        self._locations: Dict[str, Coordinates] = {}
        for address, (lat, lng) in (locations or {}).items():
            self.add(address, lat, lng)
        self.lookups: list[str] = []

    def add(self, address: str, lat: float, lng: float) -> None:
        self._locations[normalize_address(address)] = Coordinates(lat=lat, lng=lng)

    async def geocode(self, address: str) -> Coordinates | None:
        self.lookups.append(address)
        return self._locations.get(normalize_address(address))
