"""
Service layer helpers that orchestrate the store, geocoding and domain logic.
"""

from .availability_service import AvailabilityService
from .booking_service import AcceptResult, BookingService
from .buffer_service import BufferService
from .eligibility import EligibilityResolver, Geocoder
from .merged_availability import MergedAvailabilityService
from .recurring_schedule import ProjectionResult, RecurringScheduleService
from .store import AvailabilityStore

__all__ = [
    "AcceptResult",
    "AvailabilityService",
    "AvailabilityStore",
    "BookingService",
    "BufferService",
    "EligibilityResolver",
    "Geocoder",
    "MergedAvailabilityService",
    "ProjectionResult",
    "RecurringScheduleService",
]
