"""Booking record sources (the booking store is an external collaborator)."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol

import httpx

from .config import BookingsConfig
from .contracts import Booking
from .errors import BookingNotFound, FollowupError

logger = logging.getLogger(__name__)


class BookingSource(Protocol):
    async def list_by_status(self, status: str) -> List[Booking]:
        """Return every booking currently in ``status``."""

    async def get(self, booking_id: str) -> Booking:
        """Return one booking or raise ``BookingNotFound``."""


class InMemoryBookingSource(BookingSource):
    """Bookings held in a dict; for tests and embedding."""

    def __init__(self, bookings: Optional[Iterable[Booking]] = None) -> None:
        self._bookings: Dict[str, Booking] = {b.booking_id: b for b in bookings or ()}

    def add(self, booking: Booking) -> None:
        self._bookings[booking.booking_id] = booking

    async def list_by_status(self, status: str) -> List[Booking]:
        return [b for b in self._bookings.values() if b.booking_status == status]

    async def get(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking


class HttpBookingSource(BookingSource):
    """Read bookings from the booking service's JSON API.

    Expects ``GET {base_url}/bookings?status=`` and ``GET {base_url}/bookings/{id}``
    to answer with ``{"success": true, "data": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def list_by_status(self, status: str) -> List[Booking]:
        response = await self._client.get(f"{self.base_url}/bookings", params={"status": status})
        data = _unwrap(response)
        return [Booking.model_validate(item) for item in data or []]

    async def get(self, booking_id: str) -> Booking:
        response = await self._client.get(f"{self.base_url}/bookings/{booking_id}")
        if response.status_code == 404:
            raise BookingNotFound(booking_id)
        return Booking.model_validate(_unwrap(response))

    async def close(self) -> None:
        await self._client.aclose()


def _unwrap(response: httpx.Response):
    response.raise_for_status()
    body = response.json()
    if isinstance(body, dict) and "data" in body:
        if body.get("success") is False:
            raise FollowupError(body.get("message") or "Booking service request failed")
        return body["data"]
    return body


def get_booking_source(config: BookingsConfig) -> BookingSource:
    if config.backend == "inmemory":
        return InMemoryBookingSource()
    if config.backend == "http":
        if not config.base_url:
            raise ValueError("bookings.base_url is required for the http backend")
        return HttpBookingSource(config.base_url, timeout=config.timeout)
    raise ValueError(f"Unsupported bookings backend: {config.backend}")
