"""Client for the Nominatim geocoding service (reverse, forward and venue search).

Nominatim allows about one request per second. Callers must route every call
through the RateLimitedQueue; this client only performs the HTTP requests.
"""
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings


class NominatimClient:
    """HTTP client wrapper for the Nominatim API."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = settings.nominatim_url.rstrip("/")
        self.user_agent = settings.nominatim_user_agent
        self.timeout = settings.geocoding_timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)

    def _headers(self) -> Dict[str, str]:
        # Nominatim's usage policy requires an identifying User-Agent
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    async def reverse(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """Convert coordinates into a structured address."""
        response = await self.http_client.get(
            f"{self.base_url}/reverse",
            params={
                "lat": latitude,
                "lon": longitude,
                "format": "jsonv2",
                "addressdetails": 1,
                "zoom": 10,
            },
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def search(
        self,
        query: str,
        limit: int = 1,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_deg: float = 0.05,
    ) -> List[Dict[str, Any]]:
        """
        Free-text search (forward geocoding and venue search).

        Args:
            query: Free-text query ("Paris", "cafe", ...)
            limit: Maximum number of results
            latitude: Optional centre latitude to bound the search
            longitude: Optional centre longitude to bound the search
            radius_deg: Half-size of the bounding box in degrees

        Returns:
            List of raw Nominatim results
        """
        params: Dict[str, Any] = {
            "q": query,
            "format": "jsonv2",
            "addressdetails": 1,
            "limit": limit,
        }
        if latitude is not None and longitude is not None:
            params["viewbox"] = (
                f"{longitude - radius_deg},{latitude + radius_deg},"
                f"{longitude + radius_deg},{latitude - radius_deg}"
            )
            params["bounded"] = 1

        response = await self.http_client.get(
            f"{self.base_url}/search",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, list) else []
