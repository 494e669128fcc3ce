import asyncio

import httpx
import pytest

from app.config import settings
from app.errors import LocationNotFoundError
from app.models.planner import Coordinates, LocationSource
from app.services.ip_geolocation import IpGeolocationClient
from app.services.location_resolver import (
    LocationResolver,
    coordinate_label,
    extract_place_name,
    looks_like_postcode,
)
from app.services.nominatim_client import NominatimClient
from app.services.request_queue import RateLimitedQueue
from tests.conftest import mock_client


def _resolver(handler):
    client = mock_client(handler)
    return LocationResolver(
        NominatimClient(client),
        RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5),
        IpGeolocationClient(client),
        reverse_attempts=2,
        reverse_delays=(0, 0),
    )


def _router(reverse=None, search=None, ip=None):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path.endswith("/reverse"):
            return reverse(request) if reverse else httpx.Response(500)
        if request.url.path.endswith("/search"):
            return search(request) if search else httpx.Response(500)
        return ip(request) if ip else httpx.Response(500)

    return handler, calls


PARIS = Coordinates(latitude=48.8566, longitude=2.3522)


@pytest.mark.parametrize(
    "token,expected",
    [
        ("75001", True),
        ("SW1A 1AA", True),
        ("K1A 0B1", True),
        ("12", True),
        ("Paris", False),
        ("Île-de-France", False),
    ],
)
def test_looks_like_postcode(token, expected):
    assert looks_like_postcode(token) is expected


def test_extract_place_name_prefers_structured_address():
    result = {"address": {"suburb": "Marais", "city": "Paris"}, "display_name": "Somewhere, Else"}
    assert extract_place_name(result) == "Paris"


def test_extract_place_name_skips_postcodes_in_display_name():
    assert extract_place_name({"display_name": "75001, 12, Paris, France"}) == "Paris"
    assert extract_place_name({"display_name": "75001, 12"}) is None


@pytest.mark.asyncio
async def test_device_coordinates_are_reverse_geocoded():
    handler, calls = _router(
        reverse=lambda request: httpx.Response(
            200, json={"address": {"city": "Paris", "country": "France"}}
        )
    )
    location = await _resolver(handler).resolve(PARIS)

    assert location.city == "Paris"
    assert location.country == "France"
    assert location.source == LocationSource.DEVICE
    assert (location.latitude, location.longitude) == (48.8566, 2.3522)
    assert calls == ["/reverse"]


@pytest.mark.asyncio
async def test_reverse_geocoding_retries_then_labels_coordinates():
    handler, calls = _router()
    location = await _resolver(handler).resolve(PARIS)

    assert calls == ["/reverse", "/reverse"]
    assert location.city == coordinate_label(48.8566, 2.3522) == "Location (48.8566, 2.3522)"
    assert location.source == LocationSource.DEVICE
    assert location.has_coordinates


@pytest.mark.asyncio
async def test_reverse_geocoding_attempts_wait_increasing_delays():
    loop = asyncio.get_running_loop()
    request_times = []

    def handler(request: httpx.Request) -> httpx.Response:
        request_times.append(loop.time())
        return httpx.Response(500)

    client = mock_client(handler)
    resolver = LocationResolver(
        NominatimClient(client),
        RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5),
        IpGeolocationClient(client),
        reverse_attempts=2,
        reverse_delays=(0.05, 0.1),
    )

    started = loop.time()
    await resolver.resolve(PARIS)

    assert len(request_times) == 2
    assert request_times[0] - started >= 0.045
    assert request_times[1] - request_times[0] >= 0.095


@pytest.mark.asyncio
async def test_reverse_geocoding_recovers_on_second_attempt():
    attempts = {"n": 0}

    def reverse(request):
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"display_name": "75004, Paris, France"})

    handler, _ = _router(reverse=reverse)
    location = await _resolver(handler).resolve(PARIS)

    assert location.city == "Paris"
    assert attempts["n"] == 2


@pytest.mark.asyncio
async def test_ip_geolocation_used_without_device_coordinates():
    handler, calls = _router(
        ip=lambda request: httpx.Response(
            200,
            json={"city": "Berlin", "latitude": 52.52, "longitude": 13.405, "country_name": "Germany"},
        )
    )
    location = await _resolver(handler).resolve(None)

    assert location.source == LocationSource.IP
    assert location.city == "Berlin"
    assert location.country == "Germany"
    assert "/reverse" not in calls


@pytest.mark.asyncio
async def test_ip_coordinates_without_city_get_a_label():
    handler, _ = _router(ip=lambda request: httpx.Response(200, json={"latitude": 1.5, "longitude": 2.25}))
    location = await _resolver(handler).resolve(None)

    assert location.source == LocationSource.IP
    assert location.city == "Location (1.5000, 2.2500)"


@pytest.mark.asyncio
async def test_default_location_when_everything_fails():
    handler, _ = _router()
    location = await _resolver(handler).resolve(None)

    assert location.source == LocationSource.DEFAULT
    assert location.is_default
    assert location.city == settings.default_city
    assert location.latitude == settings.default_latitude


@pytest.mark.asyncio
async def test_resolve_city_returns_manual_location():
    handler, calls = _router(
        search=lambda request: httpx.Response(
            200,
            json=[{"lat": "41.3874", "lon": "2.1686", "address": {"city": "Barcelona", "country": "Spain"}}],
        )
    )
    location = await _resolver(handler).resolve_city("  barcelona ")

    assert location.source == LocationSource.MANUAL
    assert location.city == "Barcelona"
    assert location.latitude == pytest.approx(41.3874)
    assert calls == ["/search"]


@pytest.mark.asyncio
async def test_resolve_city_without_match_raises():
    handler, _ = _router(search=lambda request: httpx.Response(200, json=[]))
    with pytest.raises(LocationNotFoundError):
        await _resolver(handler).resolve_city("Atlantis")
