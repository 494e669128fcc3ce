"""
Geocoding Proxy Router
Proxies Nominatim calls through the shared rate-limited queue so that the
frontend never talks to the provider directly.
"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_planner_session
from app.errors import QueueError
from app.services.location_resolver import extract_place_name
from app.services.planner_session import PlannerSession

router = APIRouter(prefix="/geocoding", tags=["geocoding"])
logger = logging.getLogger(__name__)


@router.get("/reverse")
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90, description="Latitude"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude"),
    session: PlannerSession = Depends(get_planner_session),
):
    """
    Reverse geocode coordinates into a place name.

    Args:
        lat: Latitude
        lon: Longitude

    Returns:
        Extracted place name plus the raw Nominatim result
    """
    try:
        data = await session.queue.enqueue(
            lambda: session.geocoder.reverse(lat, lon),
            kind="reverse_geocode",
            priority=True,
        )
    except QueueError as e:
        logger.warning(f"Reverse geocoding request dropped: {e}")
        raise HTTPException(status_code=503, detail="Geocoding queue unavailable")
    except httpx.HTTPError as e:
        logger.error(f"Nominatim reverse geocoding error: {e}")
        raise HTTPException(status_code=502, detail="Failed to reverse geocode")

    name: Optional[str] = extract_place_name(data) if isinstance(data, dict) else None
    return {"name": name, "result": data}


@router.get("/search")
async def search_places(
    q: str = Query(..., min_length=1, description="Search query"),
    limit: int = Query(5, ge=1, le=20, description="Maximum results"),
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Centre latitude"),
    lon: Optional[float] = Query(None, ge=-180, le=180, description="Centre longitude"),
    session: PlannerSession = Depends(get_planner_session),
):
    """
    Free-text place search (cities or venues).

    When both `lat` and `lon` are given the search is bounded to the
    surrounding area.
    """
    try:
        results = await session.queue.enqueue(
            lambda: session.geocoder.search(q, limit=limit, latitude=lat, longitude=lon),
            kind="place_search",
        )
    except QueueError as e:
        logger.warning(f"Place search request dropped: {e}")
        raise HTTPException(status_code=503, detail="Geocoding queue unavailable")
    except httpx.HTTPError as e:
        logger.error(f"Nominatim search error: {e}")
        raise HTTPException(status_code=502, detail="Failed to search places")

    return {
        "results": [
            {
                "name": extract_place_name(result),
                "display_name": result.get("display_name"),
                "lat": result.get("lat"),
                "lon": result.get("lon"),
            }
            for result in results
            if isinstance(result, dict)
        ]
    }
