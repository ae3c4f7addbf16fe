"""
Availability store backed by the hosted backend's PostgREST API.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import date
from typing import Any, Dict, Iterable, List, Sequence

import requests
from pendulum import DateTime

from ..domain.exceptions import StorageError, UnsupportedQueryError
from ..domain.models import (
    AvailabilityRecord,
    BookingRecord,
    BookingStatus,
    GardenerProfile,
    JobSpec,
    RecurringScheduleTemplate,
    RecurringSettings,
    as_date,
)
from .rows import (
    Row,
    availability_rows,
    booking_from_row,
    gardener_from_row,
    hour_to_time,
    pending_row,
    settings_from_row,
    settings_to_row,
    template_from_row,
    template_to_row,
    time_to_hour,
)

logger = logging.getLogger(__name__)

OCCUPYING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value)


def _in_list(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


class RestAvailabilityStore:
    """
    ``AvailabilityStore`` over PostgREST.

    Requests are blocking (``requests``) and run in a worker thread so the
    event loop stays free while gardeners are fetched concurrently. Every
    request carries an explicit timeout.

    ``requests.Session`` is not thread-safe, so each worker thread gets its
    own session. A session passed in is shared by all threads and must be
    safe for that.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize the store.

        Args:
            base_url: Project URL, e.g. ``https://xyz.supabase.co``
            api_key: Anon or service key sent as ``apikey`` and bearer token
            timeout_seconds: Per-request timeout
            session: Optional session shared by every worker thread
        """
        self.rest_url = base_url.rstrip("/") + "/rest/v1"
        self.timeout_seconds = timeout_seconds
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._shared_session = session
        if session is not None:
            session.headers.update(self._headers)
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The session for the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update(self._headers)
            self._local.session = session
        return session

    # ---- transport -----------------------------------------------------

    def _request_sync(
        self,
        method: str,
        table: str,
        params: Dict[str, str] | None = None,
        payload: Any = None,
        prefer: str | None = None,
    ) -> List[Row]:
        headers = {"Prefer": prefer} if prefer else {}
        try:
            response = self.session.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            body = e.response.text if e.response is not None else ""
            if params and any(v.startswith("cs.") for v in params.values()) and "operator" in body:
                raise UnsupportedQueryError(f"{table}: containment filter rejected: {body}") from e
            raise StorageError(f"{method} {table} failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise StorageError(f"{method} {table} failed: {e}") from e

        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise StorageError(f"{method} {table} returned invalid JSON") from e
        return data if isinstance(data, list) else [data]

    async def _request(self, method: str, table: str, **kwargs: Any) -> List[Row]:
        return await asyncio.to_thread(self._request_sync, method, table, **kwargs)

    @staticmethod
    def _parse_rows(rows: List[Row], parser, kind: str) -> list:
        parsed = []
        for row in rows:
            try:
                parsed.append(parser(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed %s row %s: %s", kind, row.get("id"), e)
        return parsed

    # ---- availability --------------------------------------------------

    async def get_hourly_availability(self, gardener_id: str, day: date) -> Dict[int, bool]:
        rows = await self._request("GET", "availability", params={
            "select": "start_time,is_available",
            "gardener_id": f"eq.{gardener_id}",
            "date": f"eq.{day.isoformat()}",
            "order": "start_time.asc",
        })
        hourly: Dict[int, bool] = {}
        for row in rows:
            try:
                hourly[time_to_hour(row["start_time"])] = bool(row.get("is_available"))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed availability row: %s", e)
        return hourly

    async def get_availability_range(
        self, gardener_id: str, start: date, end: date
    ) -> List[AvailabilityRecord]:
        rows = await self._request("GET", "availability", params={
            "select": "date,start_time,is_available",
            "gardener_id": f"eq.{gardener_id}",
            "and": f"(date.gte.{start.isoformat()},date.lte.{end.isoformat()})",
            "order": "date.asc,start_time.asc",
        })
        return self._parse_rows(
            rows,
            lambda row: AvailabilityRecord(
                gardener_id=gardener_id,
                date=as_date(row["date"]),
                hour=time_to_hour(row["start_time"]),
                is_available=bool(row.get("is_available")),
            ),
            "availability",
        )

    async def set_hourly_availability(
        self, gardener_id: str, day: date, available_hours: Sequence[int]
    ) -> None:
        await self._request("DELETE", "availability", params={
            "gardener_id": f"eq.{gardener_id}",
            "date": f"eq.{day.isoformat()}",
        })
        rows = availability_rows(gardener_id, day, list(available_hours))
        if rows:
            await self._request("POST", "availability", payload=rows, prefer="return=minimal")

    async def block_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        await self._set_flag(gardener_id, day, hours, False)

    async def release_hours(self, gardener_id: str, day: date, hours: Sequence[int]) -> None:
        await self._set_flag(gardener_id, day, hours, True)

    async def _set_flag(
        self, gardener_id: str, day: date, hours: Sequence[int], value: bool
    ) -> None:
        if not hours:
            return
        await self._request(
            "PATCH",
            "availability",
            params={
                "gardener_id": f"eq.{gardener_id}",
                "date": f"eq.{day.isoformat()}",
                "start_time": _in_list(hour_to_time(h) for h in hours),
            },
            payload={"is_available": value},
            prefer="return=minimal",
        )

    # ---- bookings ------------------------------------------------------

    async def get_confirmed_bookings(self, gardener_id: str, day: date) -> List[BookingRecord]:
        rows = await self._request("GET", "bookings", params={
            "select": "*",
            "gardener_id": f"eq.{gardener_id}",
            "date": f"eq.{day.isoformat()}",
            "status": _in_list(OCCUPYING_STATUSES),
            "order": "start_time.asc",
        })
        return self._parse_rows(rows, booking_from_row, "booking")

    async def get_booking(self, booking_id: str) -> BookingRecord | None:
        rows = await self._request("GET", "bookings", params={
            "select": "*",
            "id": f"eq.{booking_id}",
        })
        parsed = self._parse_rows(rows, booking_from_row, "booking")
        return parsed[0] if parsed else None

    async def create_pending_bookings(
        self,
        job: JobSpec,
        gardener_ids: Sequence[str],
        expires_at: DateTime,
        created_at: DateTime,
    ) -> List[BookingRecord]:
        payload = [pending_row(job, gid, expires_at, created_at) for gid in gardener_ids]
        rows = await self._request(
            "POST", "bookings", payload=payload, prefer="return=representation"
        )
        return self._parse_rows(rows, booking_from_row, "booking")

    async def list_pending_bookings(self, gardener_id: str) -> List[BookingRecord]:
        rows = await self._request("GET", "bookings", params={
            "select": "*",
            "gardener_id": f"eq.{gardener_id}",
            "status": f"eq.{BookingStatus.PENDING.value}",
            "order": "date.asc,start_time.asc",
        })
        return self._parse_rows(rows, booking_from_row, "booking")

    async def mark_expired(self, booking_ids: Sequence[str], gardener_id: str) -> int:
        if not booking_ids:
            return 0
        rows = await self._request(
            "PATCH",
            "bookings",
            params={
                "id": _in_list(booking_ids),
                "gardener_id": f"eq.{gardener_id}",
                "status": f"eq.{BookingStatus.PENDING.value}",
            },
            payload={"status": BookingStatus.EXPIRED.value},
            prefer="return=representation",
        )
        return len(rows)

    async def confirm_and_cancel_siblings(
        self, booking_id: str, gardener_id: str, now: DateTime
    ) -> bool:
        # Conditional update: only a still-pending, unexpired row is confirmed,
        # so a second concurrent accept matches zero rows.
        rows = await self._request(
            "PATCH",
            "bookings",
            params={
                "id": f"eq.{booking_id}",
                "gardener_id": f"eq.{gardener_id}",
                "status": f"eq.{BookingStatus.PENDING.value}",
                "or": f"(expires_at.is.null,expires_at.gt.{now.to_iso8601_string()})",
            },
            payload={"status": BookingStatus.CONFIRMED.value, "updated_at": now.to_iso8601_string()},
            prefer="return=representation",
        )
        if not rows:
            return False

        confirmed = booking_from_row(rows[0])
        await self._request(
            "PATCH",
            "bookings",
            params={
                "client_id": f"eq.{confirmed.client_id}",
                "service_id": f"eq.{confirmed.service_id}",
                "date": f"eq.{confirmed.date.isoformat()}",
                "start_time": f"eq.{hour_to_time(confirmed.start_hour)}",
                "status": f"eq.{BookingStatus.PENDING.value}",
                "id": f"neq.{booking_id}",
            },
            payload={"status": BookingStatus.CANCELLED.value, "updated_at": now.to_iso8601_string()},
            prefer="return=minimal",
        )
        return True

    async def update_booking_status(
        self,
        booking_id: str,
        gardener_id: str | None,
        status: BookingStatus,
        expected: BookingStatus | None = None,
    ) -> bool:
        params = {"id": f"eq.{booking_id}"}
        if gardener_id is not None:
            params["gardener_id"] = f"eq.{gardener_id}"
        if expected is not None:
            params["status"] = f"eq.{expected.value}"
        rows = await self._request(
            "PATCH", "bookings", params=params,
            payload={"status": status.value}, prefer="return=representation",
        )
        return bool(rows)

    # ---- gardeners -----------------------------------------------------

    async def list_gardeners(
        self,
        service_ids: Sequence[str] | None = None,
        only_available: bool = True,
    ) -> List[GardenerProfile]:
        params = {"select": "*"}
        if service_ids:
            params["services"] = "cs.{" + ",".join(service_ids) + "}"
        if only_available:
            params["is_available"] = "eq.true"
        rows = await self._request("GET", "gardener_profiles", params=params)
        return self._parse_rows(rows, gardener_from_row, "gardener profile")

    # ---- recurring schedules -------------------------------------------

    async def get_recurring_templates(self, gardener_id: str) -> List[RecurringScheduleTemplate]:
        rows = await self._request("GET", "recurring_schedules", params={
            "select": "*",
            "gardener_id": f"eq.{gardener_id}",
        })
        return self._parse_rows(rows, template_from_row, "recurring schedule")

    async def replace_recurring_templates(
        self, gardener_id: str, templates: Sequence[RecurringScheduleTemplate]
    ) -> None:
        await self._request("DELETE", "recurring_schedules", params={
            "gardener_id": f"eq.{gardener_id}",
        })
        if templates:
            await self._request(
                "POST", "recurring_schedules",
                payload=[template_to_row(t) for t in templates],
                prefer="return=minimal",
            )

    async def get_recurring_settings(self, gardener_id: str) -> RecurringSettings | None:
        rows = await self._request("GET", "recurring_availability_settings", params={
            "select": "*",
            "gardener_id": f"eq.{gardener_id}",
        })
        parsed = self._parse_rows(rows, settings_from_row, "recurring settings")
        return parsed[0] if parsed else None

    async def save_recurring_settings(self, settings: RecurringSettings) -> None:
        await self._request(
            "POST", "recurring_availability_settings",
            payload=settings_to_row(settings),
            prefer="resolution=merge-duplicates,return=minimal",
        )
