"""
Social activity and local event enrichment.

Looks up nearby venues through the rate-limited queue so that block prompts
can suggest concrete places to meet people or catch an event. Every lookup
is best-effort: failures are logged and produce empty lists.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.config import settings
from app.models.planner import Location, Preferences, SocialLevel, Venue
from app.services.nominatim_client import NominatimClient
from app.services.request_queue import RateLimitedQueue

logger = logging.getLogger(__name__)

# How many venue queries to run per social level
_QUERIES_PER_LEVEL = {
    SocialLevel.LOW: 1,
    SocialLevel.MODERATE: 2,
    SocialLevel.HIGH: 3,
}


def _venue_from_result(result: Dict[str, Any], kind: str) -> Optional[Venue]:
    name = result.get("name") or (result.get("display_name") or "").split(",")[0]
    if not name or not name.strip():
        return None
    try:
        latitude = float(result["lat"])
        longitude = float(result["lon"])
    except (KeyError, TypeError, ValueError):
        latitude = longitude = None
    return Venue(
        name=name.strip(),
        kind=kind,
        latitude=latitude,
        longitude=longitude,
        address=result.get("display_name"),
    )


def summarize_venues(social_venues: Sequence[Venue], local_events: Sequence[Venue]) -> Optional[str]:
    """Render venues as a compact prompt fragment."""
    parts = [f"{venue.name} ({venue.kind})" for venue in [*social_venues, *local_events]]
    return "; ".join(parts) if parts else None


class SocialEnrichmentService:
    """Find nearby social venues and event venues for a location."""

    def __init__(self, geocoder: NominatimClient, queue: RateLimitedQueue) -> None:
        self.geocoder = geocoder
        self.queue = queue
        self.limit = settings.social_venue_limit

    async def enrich(self, location: Location, preferences: Preferences) -> Tuple[List[Venue], List[Venue]]:
        """
        Return (social_venues, local_events) near the location.

        Queries are issued sequentially; the queue spaces them out anyway.
        """
        if not location.has_coordinates:
            logger.info("Skipping social enrichment: location has no coordinates")
            return [], []

        count = _QUERIES_PER_LEVEL.get(preferences.social_level, 1)
        social_venues: List[Venue] = []
        for query in settings.social_venue_queries[:count]:
            social_venues.extend(await self._search(query, location))

        local_events: List[Venue] = []
        for query in settings.event_venue_queries:
            local_events.extend(await self._search(query, location))

        logger.info(
            f"Found {len(social_venues)} social venues and {len(local_events)} event venues near {location.city}"
        )
        return social_venues, local_events

    async def _search(self, query: str, location: Location) -> List[Venue]:
        try:
            results = await self.queue.enqueue(
                lambda: self.geocoder.search(
                    query,
                    limit=self.limit,
                    latitude=location.latitude,
                    longitude=location.longitude,
                ),
                kind="venue_search",
            )
        except Exception as exc:
            logger.warning(f"Venue search for '{query}' failed: {exc}")
            return []

        venues = [_venue_from_result(result, query) for result in results or []]
        return [venue for venue in venues if venue is not None]
