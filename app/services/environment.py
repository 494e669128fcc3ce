"""
Environment context: weather, air quality and derived clothing advice.

Both provider calls fall back to fixed neutral values on any failure, so
resolving the environment never fails.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.models.planner import (
    EnvironmentSnapshot,
    IndoorPreference,
    Location,
    Preferences,
)

logger = logging.getLogger(__name__)

DEFAULT_WEATHER: Dict[str, Any] = {
    "temperature": 15.0,
    "precipitation_mm": 0.0,
    "wind_speed_kmh": 5.0,
    "sunrise": "06:30",
    "sunset": "19:30",
}

RAIN_THRESHOLD_MM = 2.0
WIND_THRESHOLD_KMH = 25.0


def _clock_time(value: Any, default: str) -> str:
    # Open-Meteo returns ISO timestamps ("2024-05-01T05:32")
    if not isinstance(value, str) or not value:
        return default
    return value.split("T")[-1][:5]


class EnvironmentService:
    """Fetch weather (Open-Meteo) and AQI (WAQI) snapshots."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.weather_url = settings.weather_api_url
        self.aqi_url = settings.aqi_api_url.rstrip("/")
        self.aqi_token = settings.aqi_api_token
        self.timeout = settings.environment_timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def fetch_weather(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """
        Fetch current weather plus today's sunrise/sunset.

        Returns:
            Dict with temperature, precipitation_mm, wind_speed_kmh, sunrise,
            sunset. The default values are returned on any failure.
        """
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m,precipitation,wind_speed_10m",
            "daily": "sunrise,sunset",
            "timezone": "auto",
            "forecast_days": 1,
        }
        try:
            response = await self.http_client.get(self.weather_url, params=params, timeout=self.timeout)
            if response.status_code != 200:
                logger.warning(f"Weather API returned status {response.status_code}, using defaults")
                return dict(DEFAULT_WEATHER, is_fallback=True)

            data = response.json()
            current = data.get("current") if isinstance(data, dict) else None
            if not isinstance(current, dict):
                logger.warning("Weather API returned no current conditions, using defaults")
                return dict(DEFAULT_WEATHER, is_fallback=True)
            daily = data.get("daily")
            if not isinstance(daily, dict):
                daily = {}
            sunrise: List[str] = daily.get("sunrise") or []
            sunset: List[str] = daily.get("sunset") or []
            return {
                "temperature": float(current["temperature_2m"]),
                "precipitation_mm": float(current.get("precipitation") or 0.0),
                "wind_speed_kmh": float(current.get("wind_speed_10m") or 0.0),
                "sunrise": _clock_time(sunrise[0] if sunrise else None, DEFAULT_WEATHER["sunrise"]),
                "sunset": _clock_time(sunset[0] if sunset else None, DEFAULT_WEATHER["sunset"]),
                "is_fallback": False,
            }
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Weather fetch failed, using defaults: {exc}")
            return dict(DEFAULT_WEATHER, is_fallback=True)

    async def fetch_aqi(self, city: str) -> Optional[int]:
        """Fetch the air quality index for a city, or None when unknown."""
        try:
            response = await self.http_client.get(
                f"{self.aqi_url}/{city.strip().lower()}/",
                params={"token": self.aqi_token},
                timeout=self.timeout,
            )
            if response.status_code != 200:
                logger.warning(f"AQI API returned status {response.status_code}")
                return None

            data = response.json()
            if not isinstance(data, dict) or data.get("status") != "ok":
                logger.info(f"AQI not available for {city}")
                return None
            station = data.get("data")
            if not isinstance(station, dict):
                return None
            # WAQI reports "-" for stations without a reading
            return int(station["aqi"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"AQI fetch failed: {exc}")
            return None

    async def fetch_environment(self, location: Location) -> EnvironmentSnapshot:
        """Fetch weather and AQI concurrently for a location."""
        latitude = location.latitude if location.latitude is not None else settings.default_latitude
        longitude = location.longitude if location.longitude is not None else settings.default_longitude
        weather, aqi = await asyncio.gather(
            self.fetch_weather(latitude, longitude),
            self.fetch_aqi(location.city),
        )
        snapshot = EnvironmentSnapshot(aqi=aqi, **weather)
        logger.info(
            f"Environment for {location.city}: {snapshot.temperature}°C, "
            f"{snapshot.precipitation_mm}mm, wind {snapshot.wind_speed_kmh}km/h, AQI {aqi}"
        )
        return snapshot


def is_outdoor_safe(snapshot: EnvironmentSnapshot, preferences: Optional[Preferences] = None) -> bool:
    """
    Whether outdoor suggestions are allowed.

    An explicit indoor preference always rules them out; an outdoor
    preference cannot override unsafe air quality or rain.
    """
    if preferences is not None and preferences.indoor_preference == IndoorPreference.INDOOR:
        return False
    return snapshot.outdoor_safe


# (upper bound exclusive, base, mid, outer, footwear)
_TEMPERATURE_BANDS = (
    (5.0, "thermal base layer", "thick wool sweater", "insulated winter coat", "insulated boots"),
    (10.0, "long-sleeve thermal top", "warm fleece", "heavy jacket", "closed boots"),
    (12.0, "long-sleeve top", "knit sweater", "medium-weight coat", "closed shoes"),
    (15.0, "long-sleeve top", "light sweater", "light jacket", "sneakers"),
    (18.0, "t-shirt", "light cardigan or hoodie", "optional light jacket", "sneakers"),
    (20.0, "t-shirt", "thin long-sleeve layer", None, "sneakers"),
)


def derive_clothing(snapshot: EnvironmentSnapshot) -> str:
    """
    Build a layering recommendation from the weather snapshot.

    Pure function of temperature band, precipitation and wind.
    """
    temperature = snapshot.temperature
    for upper, base, mid, outer, footwear in _TEMPERATURE_BANDS:
        if temperature < upper:
            break
    else:
        base, mid, outer, footwear = "breathable t-shirt or light shirt", None, None, "breathable shoes or sandals"

    accessories: List[str] = []
    if temperature < 5:
        accessories.extend(["hat", "gloves", "scarf"])
    elif temperature < 10:
        accessories.extend(["gloves", "scarf"])
    elif temperature >= 20:
        accessories.extend(["sunglasses", "sunscreen"])

    if snapshot.precipitation_mm > RAIN_THRESHOLD_MM:
        outer = f"waterproof {outer}" if outer else "waterproof rain jacket"
        footwear = "waterproof shoes"
        accessories.append("umbrella")
    if snapshot.wind_speed_kmh > WIND_THRESHOLD_KMH:
        outer = f"{outer} with a windbreaker" if outer else "windbreaker"

    parts = [f"Base: {base}"]
    if mid:
        parts.append(f"Mid: {mid}")
    if outer:
        parts.append(f"Outer: {outer}")
    parts.append(f"Footwear: {footwear}")
    if accessories:
        parts.append(f"Accessories: {', '.join(accessories)}")
    return "; ".join(parts)
