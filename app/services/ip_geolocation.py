"""Client for IP-based geolocation (caller IP inferred by the provider)."""
from typing import Any, Dict, Optional

import httpx

from app.config import settings


class IpGeolocationClient:
    """HTTP client wrapper for an ipapi.co compatible endpoint."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = settings.ip_geolocation_url
        self.timeout = settings.ip_geolocation_timeout
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def lookup(self) -> Dict[str, Any]:
        """Return the raw provider payload for the caller's IP."""
        response = await self.http_client.get(
            self.url,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected IP geolocation payload")
        return data
