"""
Planner session: the application-state owner behind every user intent.

One session exists per process. It owns PlanState and wires the resolver,
environment, enrichment and orchestrator together for the start, stop and
modify (all / block / location) intents. Mutual exclusion between intents is
advisory: modifications are refused while a run is generating, exactly as
the UI disables its "modify" affordance.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Dict, List, Optional

import httpx

from app.errors import (
    GenerationStopped,
    LocationNotFoundError,
    NoPlanError,
    PlanBusyError,
    QueueError,
)
from app.models.planner import Activity, Coordinates, Location, LocationSource
from app.services.environment import EnvironmentService, derive_clothing, is_outdoor_safe
from app.services.ip_geolocation import IpGeolocationClient
from app.services.llm_gateway import ModelGateway
from app.services.location_resolver import LocationResolver
from app.services.nominatim_client import NominatimClient
from app.services.orchestrator import PlanGenerationOrchestrator
from app.services.plan_events import PlanEventBus
from app.services.plan_state import GenerationRun, PlanState
from app.services.preferences import PreferenceParser
from app.services.request_queue import RateLimitedQueue
from app.services.social_enrichment import SocialEnrichmentService, summarize_venues

logger = logging.getLogger(__name__)


class PlannerSession:
    """Coordinates user intents against the single PlanState."""

    def __init__(
        self,
        state: PlanState,
        queue: RateLimitedQueue,
        geocoder: NominatimClient,
        resolver: LocationResolver,
        environment: EnvironmentService,
        gateway: ModelGateway,
        orchestrator: PlanGenerationOrchestrator,
        preference_parser: PreferenceParser,
        enrichment: SocialEnrichmentService,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.state = state
        self.queue = queue
        self.geocoder = geocoder
        self.resolver = resolver
        self.environment = environment
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.preference_parser = preference_parser
        self.enrichment = enrichment
        self._http_client = http_client
        self._preparing = False
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def create(
        cls,
        http_client: Optional[httpx.AsyncClient] = None,
        queue: Optional[RateLimitedQueue] = None,
        events: Optional[PlanEventBus] = None,
    ) -> "PlannerSession":
        """Build a session with every collaborator sharing one HTTP client."""
        http_client = http_client or httpx.AsyncClient()
        queue = queue or RateLimitedQueue()
        state = PlanState(events=events or PlanEventBus())
        geocoder = NominatimClient(http_client)
        gateway = ModelGateway(http_client)
        return cls(
            state=state,
            queue=queue,
            geocoder=geocoder,
            resolver=LocationResolver(geocoder, queue, IpGeolocationClient(http_client)),
            environment=EnvironmentService(http_client),
            gateway=gateway,
            orchestrator=PlanGenerationOrchestrator(gateway, state),
            preference_parser=PreferenceParser(gateway),
            enrichment=SocialEnrichmentService(geocoder, queue),
            http_client=http_client,
        )

    async def aclose(self) -> None:
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.queue.aclose()
        if self._http_client is not None:
            await self._http_client.aclose()

    # --- state guards ---

    @property
    def is_busy(self) -> bool:
        return self._preparing or self.state.is_generating

    def ensure_idle(self) -> None:
        """Refuse a modification while a run is generating."""
        if self.is_busy:
            raise PlanBusyError("A plan is being generated; stop it or wait for it to finish")

    def ensure_plan(self) -> None:
        if self.state.environment is None or self.state.location is None:
            raise NoPlanError("No plan to modify yet; start a plan first")

    @asynccontextmanager
    async def _preparation(self) -> AsyncIterator[None]:
        self._preparing = True
        try:
            yield
        finally:
            self._preparing = False

    # --- background execution ---

    def launch(self, intent: Awaitable[Optional[GenerationRun]], supersede: bool = False) -> asyncio.Task:
        """
        Run an intent in the background.

        Args:
            intent: Coroutine of one of the intent methods
            supersede: Cancel the previous background intent first (start)
        """
        if supersede and self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._guard(intent))
        return self._task

    async def _guard(self, intent: Awaitable[Optional[GenerationRun]]) -> Optional[GenerationRun]:
        try:
            return await intent
        except GenerationStopped:
            logger.info("Planner intent stopped")
        except Exception as exc:
            logger.exception("Planner intent failed")
            self.state.events.publish("error", {"content": str(exc)})
        return None

    # --- intents ---

    async def start(
        self,
        coordinates: Optional[Coordinates] = None,
        instructions: Optional[str] = None,
    ) -> GenerationRun:
        """Full plan reset, context gathering and generation of every block."""
        self.orchestrator.stop()
        self.state.reset()
        async with self._preparation():
            self.state.events.publish("status", {"content": "Resolving location..."})
            location = await self.resolver.resolve(coordinates)
            self.state.set_location(location)

            if instructions:
                preferences = await self.preference_parser.parse(instructions, self.state.preferences)
                self.state.set_preferences(preferences)

            self.state.events.publish("status", {"content": "Fetching weather and air quality..."})
            await self._refresh_environment(location)
            await self._refresh_enrichment(location)
        return await self._generate_all()

    def stop(self) -> bool:
        """Stop whatever is running; a new start is needed to resume."""
        stopped = self.orchestrator.stop()
        if not stopped and self._preparing and self._task is not None and not self._task.done():
            self._task.cancel()
            self.state.events.publish("run_stopped", {"run_id": None, "reason": "stopped", "reset_block_ids": []})
            stopped = True
        return stopped

    async def modify_all(self, instructions: str) -> GenerationRun:
        """Re-parse instructions into preferences and regenerate every block."""
        self.ensure_idle()
        self.ensure_plan()
        async with self._preparation():
            preferences = await self.preference_parser.parse(instructions, self.state.preferences)
            self.state.set_preferences(preferences)
            self._update_outdoor_safety()
            previous = self.state.activities_by_block()
            self.state.reset_blocks()
        return await self._generate_all(previous)

    async def modify_block(self, block_id: int, instructions: Optional[str] = None) -> GenerationRun:
        """Regenerate a single block; every other block is left as is."""
        self.ensure_idle()
        self.ensure_plan()
        self.state.block(block_id)
        return await self.orchestrator.regenerate_block(
            block_id,
            self.state.environment,
            self.state.preferences,
            location=self.state.location,
            clothing=self.state.clothing,
            social_context=summarize_venues(self.state.social_venues, self.state.local_events),
            instructions=instructions,
        )

    async def modify_location(self, city: str) -> GenerationRun:
        """Switch to a user-typed city (no device geolocation) and regenerate."""
        self.ensure_idle()
        self.ensure_plan()
        async with self._preparation():
            previous = self.state.location
            try:
                location = await self.resolver.resolve_city(city)
            except (LocationNotFoundError, QueueError, httpx.HTTPError, ValueError) as exc:
                logger.warning(f"Location change to '{city}' failed, keeping previous coordinates: {exc}")
                location = Location(
                    city=city.strip(),
                    latitude=previous.latitude,
                    longitude=previous.longitude,
                    country=previous.country,
                    source=LocationSource.MANUAL,
                )
            self.state.set_location(location)
            await self._refresh_environment(location)
            await self._refresh_enrichment(location)
            self.state.reset_blocks()
        return await self._generate_all()

    # --- helpers ---

    async def _refresh_environment(self, location: Location) -> None:
        environment = await self.environment.fetch_environment(location)
        self.state.set_environment(
            environment,
            derive_clothing(environment),
            is_outdoor_safe(environment, self.state.preferences),
        )

    def _update_outdoor_safety(self) -> None:
        environment = self.state.environment
        if environment is not None:
            self.state.set_environment(
                environment,
                self.state.clothing or derive_clothing(environment),
                is_outdoor_safe(environment, self.state.preferences),
            )

    async def _refresh_enrichment(self, location: Location) -> None:
        social_venues, local_events = await self.enrichment.enrich(location, self.state.preferences)
        self.state.set_enrichment(social_venues, local_events)

    async def _generate_all(
        self,
        previous: Optional[Dict[int, List[Activity]]] = None,
    ) -> GenerationRun:
        self.state.events.publish("status", {"content": "Planning your day..."})
        return await self.orchestrator.generate(
            self.state.environment,
            self.state.blocks,
            self.state.preferences,
            previous,
            location=self.state.location,
            clothing=self.state.clothing,
            social_context=summarize_venues(self.state.social_venues, self.state.local_events),
        )
