"""
Adapters layer - External integrations (hosted backend, geocoding).
"""

from .geocoding import GoogleGeocoder, StaticGeocoder
from .memory_store import InMemoryAvailabilityStore
from .rest_store import RestAvailabilityStore

__all__ = ["GoogleGeocoder", "StaticGeocoder", "InMemoryAvailabilityStore", "RestAvailabilityStore"]
