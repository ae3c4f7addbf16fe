"""
Conversion between backend rows (JSON objects) and domain records.

Rows follow the hosted backend's column names: times are ``HH:MM[:SS]``
strings, dates ``YYYY-MM-DD``, timestamps ISO 8601. Malformed rows raise
``ValueError``/``KeyError`` so adapters can reject them at the boundary.
"""

from typing import Any, Dict, List

import pendulum
from pendulum import DateTime

from ..domain.models import (
    BookingRecord,
    BookingStatus,
    DEFAULT_TRAVEL_FEE,
    GardenerProfile,
    JobSpec,
    RecurringScheduleTemplate,
    RecurringSettings,
    as_date,
    hour_label,
)

Row = Dict[str, Any]


def time_to_hour(value: Any) -> int:
    """Convert ``"09:00:00"``/``"09:00"``/``9`` to an hour number."""
    if isinstance(value, int):
        return value
    return int(str(value).split(":")[0])


def hour_to_time(hour: int) -> str:
    return f"{hour_label(hour)}:00"


def parse_timestamp(value: Any) -> DateTime | None:
    if value in (None, ""):
        return None
    parsed = pendulum.parse(str(value))
    if not isinstance(parsed, DateTime):
        raise ValueError(f"Not a timestamp: {value}")
    return parsed


def booking_from_row(row: Row) -> BookingRecord:
    hourly_rate = row.get("hourly_rate")
    return BookingRecord(
        id=str(row["id"]),
        client_id=str(row["client_id"]),
        gardener_id=str(row["gardener_id"]),
        service_id=str(row.get("service_id") or ""),
        date=as_date(row["date"]),
        start_hour=time_to_hour(row["start_time"]),
        duration_hours=int(row.get("duration_hours") or 1),
        status=BookingStatus(row.get("status", BookingStatus.PENDING.value)),
        total_price=float(row.get("total_price") or 0.0),
        expires_at=parse_timestamp(row.get("expires_at")),
        client_address=row.get("client_address") or "",
        notes=row.get("notes") or "",
        travel_fee=float(row.get("travel_fee", DEFAULT_TRAVEL_FEE) or 0.0),
        hourly_rate=float(hourly_rate) if hourly_rate is not None else None,
        created_at=parse_timestamp(row.get("created_at")),
    )


def pending_row(
    job: JobSpec,
    gardener_id: str,
    expires_at: DateTime,
    created_at: DateTime,
) -> Row:
    """Insert payload for one broadcast row."""
    return {
        "client_id": job.client_id,
        "gardener_id": gardener_id,
        "service_id": job.service_id,
        "date": job.date.isoformat(),
        "start_time": hour_label(job.start_hour),
        "duration_hours": job.duration_hours,
        "status": BookingStatus.PENDING.value,
        "total_price": job.total_price,
        "travel_fee": job.travel_fee,
        "hourly_rate": job.effective_hourly_rate(),
        "client_address": job.client_address,
        "notes": job.notes,
        "expires_at": expires_at.to_iso8601_string(),
        "created_at": created_at.to_iso8601_string(),
    }


def gardener_from_row(row: Row) -> GardenerProfile:
    services = row.get("services") or row.get("service_ids") or []
    if not isinstance(services, list):
        raise ValueError(f"services must be a list, got {type(services).__name__}")

    # max_distance supersedes work_radius on newer profiles
    radius = row.get("max_distance")
    if radius is None:
        radius = row.get("work_radius", row.get("work_radius_km"))

    return GardenerProfile(
        user_id=str(row["user_id"]),
        address=row.get("address") or None,
        work_radius_km=float(radius) if radius is not None else None,
        service_ids=tuple(str(s) for s in services),
        is_available=bool(row.get("is_available", True)),
    )


def template_from_row(row: Row) -> RecurringScheduleTemplate:
    return RecurringScheduleTemplate(
        gardener_id=str(row["gardener_id"]),
        day_of_week=int(row["day_of_week"]),
        start_hour=time_to_hour(row["start_time"]),
        end_hour=time_to_hour(row["end_time"]),
    )


def template_to_row(template: RecurringScheduleTemplate) -> Row:
    return {
        "gardener_id": template.gardener_id,
        "day_of_week": template.day_of_week,
        "start_time": hour_label(template.start_hour),
        "end_time": hour_label(template.end_hour),
    }


def settings_from_row(row: Row) -> RecurringSettings:
    last = row.get("last_generated_date")
    return RecurringSettings(
        gardener_id=str(row["gardener_id"]),
        weeks_to_maintain=int(row.get("weeks_to_maintain") or 2),
        min_notice_hours=int(row.get("min_notice_hours") or 0),
        last_generated_date=as_date(last) if last else None,
    )


def settings_to_row(settings: RecurringSettings) -> Row:
    return {
        "gardener_id": settings.gardener_id,
        "weeks_to_maintain": settings.weeks_to_maintain,
        "min_notice_hours": settings.min_notice_hours,
        "last_generated_date": (
            settings.last_generated_date.isoformat()
            if settings.last_generated_date
            else None
        ),
    }


def availability_rows(gardener_id: str, day: Any, hours: List[int]) -> List[Row]:
    """One row per available hour, as the availability table stores them."""
    day_str = as_date(day).isoformat()
    return [
        {
            "gardener_id": gardener_id,
            "date": day_str,
            "start_time": hour_to_time(hour),
            "end_time": hour_to_time(hour + 1),
            "is_available": True,
        }
        for hour in sorted(set(hours))
    ]
