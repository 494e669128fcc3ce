"""
Shared test helpers for the planner services.

Network providers are replaced either by `httpx.MockTransport` handlers
(client-level tests) or by small fakes exposing the same coroutine methods
(session and orchestrator tests).
"""
import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import pytest

from app.models.planner import (
    DEFAULT_TIME_BLOCKS,
    EnvironmentSnapshot,
    Location,
    LocationSource,
)
from app.services.orchestrator import PlanGenerationOrchestrator
from app.services.plan_state import PlanState
from app.services.planner_session import PlannerSession
from app.services.preferences import PreferenceParser
from app.services.request_queue import RateLimitedQueue

_BLOCK_WINDOW_RE = re.compile(r"\((\d\d:\d\d)-\d\d:\d\d\)")
_BLOCK_BY_START = {block.start_time: block.id for block in DEFAULT_TIME_BLOCKS}


def block_id_of(prompt: str) -> Optional[int]:
    """Return the id of the block a generation prompt asks for."""
    match = _BLOCK_WINDOW_RE.search(prompt)
    return _BLOCK_BY_START.get(match.group(1)) if match else None


def mock_client(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_activity(block_id: int, text: str) -> Dict[str, str]:
    block = DEFAULT_TIME_BLOCKS[block_id]
    return {"time": block.start_time, "activity": text, "notes": "from the model"}


Handler = Callable[[str, Any], Awaitable[Any]]


class FakeGateway:
    """Stands in for ModelGateway; records prompts and delegates to a handler."""

    def __init__(self, handler: Optional[Handler] = None) -> None:
        self.handler = handler
        self.calls: List[str] = []

    async def complete(self, prompt, max_attempts=None, *, base_delay=None, token=None, status=None, system_prompt=None):
        self.calls.append(prompt)
        if self.handler is None:
            return None
        return await self.handler(prompt, token)

    def block_calls(self) -> List[int]:
        return [block_id_of(prompt) for prompt in self.calls if block_id_of(prompt) is not None]


def counting_handler() -> Handler:
    """Model handler returning a fresh, distinct activity on every call."""
    counter = {"n": 0}

    async def handler(prompt: str, token: Any) -> Any:
        block_id = block_id_of(prompt)
        if block_id is None:
            return None
        counter["n"] += 1
        return [make_activity(block_id, f"Model idea {counter['n']} for block {block_id}")]

    return handler


class FakeResolver:
    def __init__(self, location: Location, city_error: Optional[Exception] = None) -> None:
        self.location = location
        self.city_error = city_error
        self.resolved_cities: List[str] = []

    async def resolve(self, coordinates=None) -> Location:
        return self.location

    async def resolve_city(self, name: str) -> Location:
        self.resolved_cities.append(name)
        if self.city_error is not None:
            raise self.city_error
        return Location(city=name, latitude=48.8566, longitude=2.3522, country="France", source=LocationSource.MANUAL)


class FakeEnvironment:
    def __init__(self, snapshot: EnvironmentSnapshot) -> None:
        self.snapshot = snapshot
        self.fetched: List[Location] = []

    async def fetch_environment(self, location: Location) -> EnvironmentSnapshot:
        self.fetched.append(location)
        return self.snapshot


class FakeEnrichment:
    async def enrich(self, location, preferences):
        return [], []


def build_session(
    gateway: FakeGateway,
    location: Optional[Location] = None,
    snapshot: Optional[EnvironmentSnapshot] = None,
    city_error: Optional[Exception] = None,
) -> PlannerSession:
    state = PlanState()
    return PlannerSession(
        state=state,
        queue=RateLimitedQueue(min_delay=0, settle_delay=0, item_timeout=5),
        geocoder=None,
        resolver=FakeResolver(location or london(), city_error),
        environment=FakeEnvironment(snapshot or mild_weather()),
        gateway=gateway,
        orchestrator=PlanGenerationOrchestrator(gateway, state),
        preference_parser=PreferenceParser(gateway),
        enrichment=FakeEnrichment(),
    )


def london() -> Location:
    return Location(
        city="London",
        latitude=51.5074,
        longitude=-0.1278,
        country="United Kingdom",
        source=LocationSource.DEVICE,
    )


def mild_weather() -> EnvironmentSnapshot:
    return EnvironmentSnapshot(
        temperature=16.0,
        precipitation_mm=0.0,
        wind_speed_kmh=8.0,
        sunrise="06:10",
        sunset="20:05",
        aqi=30,
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until `predicate` holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture()
def weather():
    return mild_weather()


@pytest.fixture()
def location():
    return london()
