"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    BookingRecord,
    BookingStatus,
    DayAvailability,
    GardenerProfile,
    HourBlock,
    MergedSlot,
    SequenceCheck,
    WorkingDay,
)
from .slot_merger import SlotMerger
from .recurring import ScheduleProjector

__all__ = [
    "BookingRecord",
    "BookingStatus",
    "DayAvailability",
    "GardenerProfile",
    "HourBlock",
    "MergedSlot",
    "SequenceCheck",
    "WorkingDay",
    "SlotMerger",
    "ScheduleProjector",
]
