"""
Location resolution pipeline.

Stages, each falling through to the next on failure:
device coordinates -> reverse geocoding (queued, retried) -> IP geolocation
-> static default. `resolve()` always produces a usable Location.
"""
import asyncio
import logging
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from app.config import settings
from app.errors import LocationNotFoundError
from app.models.planner import Coordinates, Location, LocationSource
from app.services.ip_geolocation import IpGeolocationClient
from app.services.nominatim_client import NominatimClient
from app.services.request_queue import RateLimitedQueue

logger = logging.getLogger(__name__)

# Address components that can name a place, most specific first
ADDRESS_NAME_FIELDS = (
    "city",
    "town",
    "village",
    "municipality",
    "hamlet",
    "suburb",
    "county",
    "state",
)

_NUMERIC_RE = re.compile(r"[\d\s-]+")
_UK_POSTCODE_RE = re.compile(r"[A-Za-z]{1,2}\d[A-Za-z\d]?\s*\d[A-Za-z]{2}")
_CA_POSTCODE_RE = re.compile(r"[A-Za-z]\d[A-Za-z]\s*\d[A-Za-z]\d")


def coordinate_label(latitude: float, longitude: float) -> str:
    return f"Location ({latitude:.4f}, {longitude:.4f})"


def looks_like_postcode(token: str) -> bool:
    """True for postal codes and bare numbers ("75001", "SW1A 1AA", "12")."""
    token = token.strip()
    return bool(
        _NUMERIC_RE.fullmatch(token)
        or _UK_POSTCODE_RE.fullmatch(token)
        or _CA_POSTCODE_RE.fullmatch(token)
    )


def extract_place_name(result: Dict[str, Any]) -> Optional[str]:
    """
    Pull a human-readable place name out of a geocoding result.

    Structured address fields win; otherwise the free-text display name is
    split on commas and the first token that is not a postal code or a bare
    number is used.
    """
    address = result.get("address") or {}
    if isinstance(address, dict):
        for field in ADDRESS_NAME_FIELDS:
            value = address.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()

    display_name = result.get("display_name") or ""
    if isinstance(display_name, str):
        for token in display_name.split(","):
            token = token.strip()
            if token and not looks_like_postcode(token):
                return token
    return None


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class LocationResolver:
    """Resolve the planning location with layered fallback."""

    def __init__(
        self,
        geocoder: NominatimClient,
        queue: RateLimitedQueue,
        ip_locator: IpGeolocationClient,
        reverse_attempts: Optional[int] = None,
        reverse_delays: Optional[Sequence[float]] = None,
    ) -> None:
        self.geocoder = geocoder
        self.queue = queue
        self.ip_locator = ip_locator
        self.reverse_attempts = (
            settings.reverse_geocode_attempts if reverse_attempts is None else reverse_attempts
        )
        self.reverse_delays = tuple(
            settings.reverse_geocode_delays if reverse_delays is None else reverse_delays
        )

    async def resolve(self, coordinates: Optional[Coordinates] = None) -> Location:
        """
        Resolve a Location. Never raises for provider failures.

        Args:
            coordinates: Device coordinates, or None when device geolocation
                is unavailable or was denied

        Returns:
            A Location tagged with its source (device, ip or default)
        """
        if coordinates is not None:
            return await self._from_device(coordinates)

        logger.info("Device geolocation unavailable, trying IP geolocation")
        location = await self._from_ip()
        if location is not None:
            return location

        logger.warning(f"Falling back to default location: {settings.default_city}")
        return self.default_location()

    async def resolve_city(self, name: str) -> Location:
        """
        Forward-geocode a user-typed city name.

        Raises:
            LocationNotFoundError: The provider returned no match
            httpx.HTTPError / QueueError: The lookup itself failed
        """
        query = name.strip()
        results = await self.queue.enqueue(
            lambda: self.geocoder.search(query, limit=1),
            kind="forward_geocode",
            priority=True,
        )
        if not results:
            raise LocationNotFoundError(f"No location found for '{query}'")

        first = results[0]
        latitude = _as_float(first.get("lat"))
        longitude = _as_float(first.get("lon"))
        address = first.get("address") or {}
        return Location(
            city=extract_place_name(first) or query,
            latitude=latitude,
            longitude=longitude,
            country=address.get("country", "") if isinstance(address, dict) else "",
            source=LocationSource.MANUAL,
        )

    @staticmethod
    def default_location() -> Location:
        return Location(
            city=settings.default_city,
            latitude=settings.default_latitude,
            longitude=settings.default_longitude,
            country=settings.default_country,
            is_default=True,
            source=LocationSource.DEFAULT,
        )

    async def _from_device(self, coordinates: Coordinates) -> Location:
        latitude, longitude = coordinates.latitude, coordinates.longitude
        name, country = await self._reverse_geocode(latitude, longitude)
        if not name:
            logger.info("Reverse geocoding gave no place name, using coordinates label")
            name = coordinate_label(latitude, longitude)
        return Location(
            city=name,
            latitude=latitude,
            longitude=longitude,
            country=country,
            source=LocationSource.DEVICE,
        )

    async def _reverse_geocode(self, latitude: float, longitude: float) -> Tuple[Optional[str], str]:
        for attempt in range(self.reverse_attempts):
            if self.reverse_delays:
                delay = self.reverse_delays[min(attempt, len(self.reverse_delays) - 1)]
                if delay > 0:
                    await asyncio.sleep(delay)
            try:
                data = await self.queue.enqueue(
                    lambda: self.geocoder.reverse(latitude, longitude),
                    kind="reverse_geocode",
                    priority=True,
                )
            except Exception as exc:
                logger.warning(
                    f"Reverse geocoding attempt {attempt + 1}/{self.reverse_attempts} failed: {exc}"
                )
                continue

            if not isinstance(data, dict):
                logger.warning("Reverse geocoding returned an unexpected payload")
                continue

            address = data.get("address") or {}
            country = address.get("country", "") if isinstance(address, dict) else ""
            return extract_place_name(data), country

        return None, ""

    async def _from_ip(self) -> Optional[Location]:
        try:
            data = await self.ip_locator.lookup()
        except Exception as exc:
            logger.warning(f"IP geolocation failed: {exc}")
            return None

        city = data.get("city")
        city = city.strip() if isinstance(city, str) else ""
        latitude = _as_float(data.get("latitude"))
        longitude = _as_float(data.get("longitude"))
        has_coordinates = latitude is not None and longitude is not None

        if not city and not has_coordinates:
            logger.warning("IP geolocation returned neither a city nor coordinates")
            return None
        if not city:
            city = coordinate_label(latitude, longitude)

        return Location(
            city=city,
            latitude=latitude if has_coordinates else None,
            longitude=longitude if has_coordinates else None,
            country=data.get("country_name") or data.get("country") or "",
            source=LocationSource.IP,
        )
