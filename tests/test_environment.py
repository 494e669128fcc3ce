import httpx
import pytest

from app.models.planner import (
    EnvironmentSnapshot,
    IndoorPreference,
    Location,
    LocationSource,
    Preferences,
)
from app.services.environment import EnvironmentService, derive_clothing, is_outdoor_safe
from tests.conftest import mock_client

BERLIN = Location(city="Berlin", latitude=52.52, longitude=13.405, source=LocationSource.IP)


def _service(weather=None, aqi=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if "/feed/" in request.url.path:
            return aqi(request) if aqi else httpx.Response(500)
        return weather(request) if weather else httpx.Response(500)

    return EnvironmentService(mock_client(handler))


@pytest.mark.asyncio
async def test_provider_failures_yield_neutral_defaults():
    snapshot = await _service().fetch_environment(BERLIN)

    assert snapshot.temperature == 15.0
    assert snapshot.precipitation_mm == 0.0
    assert snapshot.wind_speed_kmh == 5.0
    assert snapshot.aqi is None
    assert snapshot.is_fallback
    assert snapshot.outdoor_safe


@pytest.mark.asyncio
async def test_weather_and_aqi_are_parsed():
    weather = {
        "current": {"temperature_2m": 22.5, "precipitation": 0.2, "wind_speed_10m": 12},
        "daily": {"sunrise": ["2024-05-01T05:32"], "sunset": ["2024-05-01T20:41"]},
    }
    service = _service(
        weather=lambda request: httpx.Response(200, json=weather),
        aqi=lambda request: httpx.Response(200, json={"status": "ok", "data": {"aqi": 42}}),
    )
    snapshot = await service.fetch_environment(BERLIN)

    assert snapshot.temperature == 22.5
    assert snapshot.wind_speed_kmh == 12.0
    assert (snapshot.sunrise, snapshot.sunset) == ("05:32", "20:41")
    assert snapshot.aqi == 42
    assert not snapshot.is_fallback


@pytest.mark.asyncio
async def test_aqi_request_uses_city_and_token():
    seen = []

    def aqi(request):
        seen.append(request.url)
        return httpx.Response(200, json={"status": "ok", "data": {"aqi": "-"}})

    assert await _service(aqi=aqi).fetch_aqi("Berlin") is None
    assert seen[0].path.endswith("/feed/berlin/")
    assert seen[0].params["token"]


@pytest.mark.asyncio
async def test_aqi_error_status_is_unknown():
    service = _service(aqi=lambda request: httpx.Response(200, json={"status": "error", "data": "Unknown station"}))
    assert await service.fetch_aqi("Nowhere") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[], None, "ok", {"status": "ok", "data": ["aqi"]}])
async def test_aqi_body_that_is_not_an_object_is_unknown(body):
    service = _service(aqi=lambda request: httpx.Response(200, json=body))
    assert await service.fetch_aqi("Berlin") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body,temperature",
    [
        ([], 15.0),
        (None, 15.0),
        ({"current": "n/a"}, 15.0),
        ({"current": {"temperature_2m": 10}, "daily": "n/a"}, 10.0),
    ],
)
async def test_unexpected_weather_shapes_never_fail_the_snapshot(body, temperature):
    service = _service(
        weather=lambda request: httpx.Response(200, json=body),
        aqi=lambda request: httpx.Response(200, json=[]),
    )

    snapshot = await service.fetch_environment(BERLIN)

    assert snapshot.aqi is None
    assert snapshot.temperature == temperature
    assert (snapshot.sunrise, snapshot.sunset) == ("06:30", "19:30")


@pytest.mark.asyncio
async def test_weather_with_malformed_daily_keeps_current_conditions():
    body = {"current": {"temperature_2m": 10}, "daily": "n/a"}
    service = _service(weather=lambda request: httpx.Response(200, json=body))

    weather = await service.fetch_weather(52.52, 13.405)

    assert weather["temperature"] == 10.0
    assert not weather["is_fallback"]


@pytest.mark.parametrize(
    "aqi,precipitation,expected",
    [
        (None, 0.0, True),
        (99, 2.9, True),
        (100, 0.0, False),
        (150, 0.0, False),
        (20, 3.0, False),
    ],
)
def test_outdoor_safety_thresholds(aqi, precipitation, expected):
    snapshot = EnvironmentSnapshot(temperature=18, precipitation_mm=precipitation, aqi=aqi)
    assert is_outdoor_safe(snapshot) is expected


def test_indoor_preference_rules_out_outdoor_but_outdoor_preference_cannot_override():
    safe = EnvironmentSnapshot(temperature=18, aqi=20)
    unsafe = EnvironmentSnapshot(temperature=18, aqi=150)

    assert not is_outdoor_safe(safe, Preferences(indoor_preference=IndoorPreference.INDOOR))
    assert not is_outdoor_safe(unsafe, Preferences(indoor_preference=IndoorPreference.OUTDOOR))


def test_cold_wet_windy_clothing():
    snapshot = EnvironmentSnapshot(temperature=3, precipitation_mm=5, wind_speed_kmh=30)
    assert derive_clothing(snapshot) == (
        "Base: thermal base layer; Mid: thick wool sweater; "
        "Outer: waterproof insulated winter coat with a windbreaker; "
        "Footwear: waterproof shoes; Accessories: hat, gloves, scarf, umbrella"
    )


def test_warm_weather_clothing():
    assert derive_clothing(EnvironmentSnapshot(temperature=25)) == (
        "Base: breathable t-shirt or light shirt; Footwear: breathable shoes or sandals; "
        "Accessories: sunglasses, sunscreen"
    )
    assert derive_clothing(EnvironmentSnapshot(temperature=19)) == (
        "Base: t-shirt; Mid: thin long-sleeve layer; Footwear: sneakers"
    )


def test_rain_without_outer_layer_adds_rain_jacket():
    clothing = derive_clothing(EnvironmentSnapshot(temperature=25, precipitation_mm=4))
    assert "Outer: waterproof rain jacket" in clothing
    assert "umbrella" in clothing
