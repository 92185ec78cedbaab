"""
Location providers: acquire GeoCoordinates once per session start.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from logging_setup import Component, get_logger

from .errors import AcquisitionError
from .models import GeoCoordinates


logger = get_logger(Component.LOCATION)


class LocationProvider(ABC):
    @abstractmethod
    async def acquire_once(self) -> GeoCoordinates:
        """Raises AcquisitionError when no position can be obtained."""


class StaticLocationProvider(LocationProvider):
    """Configured coordinates (LOCATION_LAT / LOCATION_LON)."""

    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.latitude = latitude
        self.longitude = longitude

    async def acquire_once(self) -> GeoCoordinates:
        if self.latitude is None or self.longitude is None:
            raise AcquisitionError("location", "no static coordinates configured")
        return GeoCoordinates(latitude=self.latitude, longitude=self.longitude)


class IpLocationProvider(LocationProvider):
    """Coarse position from an IP geolocation JSON endpoint."""

    def __init__(self, url: str = "https://ipapi.co/json/", timeout_seconds: float = 5.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def _fetch(self) -> dict:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as s:
            async with s.get(self.url) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)

    async def acquire_once(self) -> GeoCoordinates:
        try:
            data = await self._fetch()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.warning("IP geolocation failed", url=self.url, error=str(e), error_type=type(e).__name__)
            raise AcquisitionError("location", str(e)) from e

        try:
            coordinates = GeoCoordinates(latitude=float(data["latitude"]), longitude=float(data["longitude"]))
        except (KeyError, TypeError, ValueError) as e:
            raise AcquisitionError("location", f"unexpected geolocation payload: {e}") from e

        logger.debug_pii("Location acquired", **coordinates.as_dict())
        return coordinates
