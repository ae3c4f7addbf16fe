"""
Domain-specific exception hierarchy for the gardenslots application.
"""


class GardenSlotsError(Exception):
    """Base class for all application-level errors."""


class StorageError(GardenSlotsError):
    """Raised when the availability store cannot be read or written."""


class UnsupportedQueryError(StorageError):
    """Raised when the store backend cannot express a query predicate."""


class GeocodingError(GardenSlotsError):
    """Raised when an address lookup fails at the transport level."""


class BookingError(GardenSlotsError):
    """Base class for booking lifecycle errors."""


class BookingNotFoundError(BookingError):
    """Raised when a booking id does not exist for the given gardener."""


class BookingAlreadyResolvedError(BookingError):
    """Raised when a booking is no longer pending (lost accept race, expiry)."""
