"""
Plan generation orchestrator.

Fans out one model call per time block, substitutes a deterministic fallback
plan when the model yields nothing usable, and supports stopping a run while
calls are in flight.

Block states: empty -> loading -> complete | error, and loading -> empty on
stop. Run states: idle -> running -> completed | stopped.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError

from app.config import settings
from app.context import run_context
from app.errors import GenerationStopped
from app.models.planner import (
    Activity,
    ActivitySource,
    EnvironmentSnapshot,
    Location,
    Preferences,
    TimeBlock,
)
from app.services.environment import is_outdoor_safe
from app.services.fallback_activities import generate_fallback_activities
from app.services.llm_gateway import ModelGateway
from app.services.plan_state import GenerationRun, PlanState
from app.services.prompts import build_block_prompt

logger = logging.getLogger(__name__)

_ACTIVITY_FIELDS = ("time", "activity", "clothing", "meal", "notes", "details")


def coerce_activities(value: Any, block: TimeBlock) -> List[Activity]:
    """
    Turn a parsed model response into Activity objects.

    Accepts a list of objects, a single object, or an object wrapping the
    list under any key. Items that cannot be validated are dropped.
    """
    if isinstance(value, dict):
        nested = next((item for item in value.values() if isinstance(item, list)), None)
        value = nested if nested is not None else [value]
    if not isinstance(value, list):
        return []

    activities: List[Activity] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        fields = {
            name: item[name] if isinstance(item[name], str) else str(item[name])
            for name in _ACTIVITY_FIELDS
            if item.get(name) is not None
        }
        fields.setdefault("time", block.start_time)
        try:
            activities.append(Activity.model_validate(fields))
        except ValidationError as exc:
            logger.debug(f"Dropping invalid activity for block {block.id}: {exc}")
    return activities


class PlanGenerationOrchestrator:
    """Drives per-block generation and owns the active GenerationRun."""

    def __init__(self, gateway: ModelGateway, state: PlanState) -> None:
        self.gateway = gateway
        self.state = state
        self.max_attempts = settings.llm_max_attempts
        self.base_delay = settings.llm_retry_base_delay

    @property
    def current_run(self) -> Optional[GenerationRun]:
        return self.state.run

    def stop(self) -> bool:
        """
        Stop the active run.

        In-flight model calls are aborted, loading blocks go back to empty
        with a stopped placeholder and complete blocks are kept.

        Returns:
            False when nothing was generating
        """
        run = self.state.run
        if run is None or not run.is_generating:
            return False
        run.token.cancel("stopped")
        reset = self.state.stop_run(run)
        logger.info(f"Run {run.run_id} stopped; reset blocks {reset}")
        return True

    def _new_run(self, block_ids: Sequence[int]) -> GenerationRun:
        previous = self.state.run
        if previous is not None and previous.is_generating:
            logger.info(f"Superseding run {previous.run_id}")
            previous.token.cancel("superseded")
            self.state.stop_run(previous, reason="superseded")
        block_ids = tuple(block_ids)
        # Never reuse a cancelled token: every run gets a fresh one
        return GenerationRun(
            run_id=uuid4().hex[:12],
            block_ids=block_ids,
            current_block_id=block_ids[0] if len(block_ids) == 1 else None,
        )

    async def generate(
        self,
        environment: EnvironmentSnapshot,
        blocks: Iterable[TimeBlock],
        preferences: Preferences,
        previous_activities_by_block: Optional[Dict[int, List[Activity]]] = None,
        *,
        location: Optional[Location] = None,
        clothing: Optional[str] = None,
        social_context: Optional[str] = None,
        instructions: Optional[str] = None,
    ) -> GenerationRun:
        """
        Generate activities for the given blocks concurrently.

        Blocks race each other and do not see one another's fresh results;
        repetition context comes only from `previous_activities_by_block`
        and, for fallback plans, from blocks that already completed.

        Returns:
            The run, completed or stopped
        """
        blocks = list(blocks)
        run = self._new_run([block.id for block in blocks])
        with run_context(run.run_id):
            self.state.begin_run(run)
            outdoor_safe = is_outdoor_safe(environment, preferences)
            previous = [
                activity
                for activities in (previous_activities_by_block or {}).values()
                for activity in activities
            ]
            logger.info(
                f"Run {run.run_id}: generating {len(blocks)} blocks (outdoor_safe={outdoor_safe})"
            )
            await asyncio.gather(
                *(
                    self._generate_block(
                        run,
                        block,
                        environment,
                        preferences,
                        outdoor_safe=outdoor_safe,
                        previous=previous,
                        location=location,
                        clothing=clothing,
                        social_context=social_context,
                        instructions=instructions,
                    )
                    for block in blocks
                )
            )
            self.state.finish_run(run)
            logger.info(f"Run {run.run_id} finished with status {run.status.value}")
        return run

    async def regenerate_block(
        self,
        block_id: int,
        environment: EnvironmentSnapshot,
        preferences: Preferences,
        *,
        location: Optional[Location] = None,
        clothing: Optional[str] = None,
        social_context: Optional[str] = None,
        instructions: Optional[str] = None,
    ) -> GenerationRun:
        """Regenerate one block using the rest of the day as repetition context."""
        block = self.state.block(block_id)
        return await self.generate(
            environment,
            [block],
            preferences,
            self.state.activities_by_block(exclude=[block_id]),
            location=location,
            clothing=clothing,
            social_context=social_context,
            instructions=instructions,
        )

    async def _generate_block(
        self,
        run: GenerationRun,
        block: TimeBlock,
        environment: EnvironmentSnapshot,
        preferences: Preferences,
        *,
        outdoor_safe: bool,
        previous: List[Activity],
        location: Optional[Location],
        clothing: Optional[str],
        social_context: Optional[str],
        instructions: Optional[str],
    ) -> None:
        try:
            prompt = build_block_prompt(
                environment,
                block,
                preferences,
                outdoor_safe=outdoor_safe,
                location=location,
                clothing=clothing,
                previous_activities=previous,
                social_context=social_context,
                instructions=instructions,
            )
            result = await self.gateway.complete(
                prompt,
                self.max_attempts,
                base_delay=self.base_delay,
                token=run.token,
                status=lambda text: self.state.report_block_progress(run, block.id, text),
            )
            activities = coerce_activities(result, block)
            source = ActivitySource.MODEL
            if not activities:
                used = [activity.activity for activity in previous]
                used.extend(activity.activity for activity in self.state.all_activities())
                activities = generate_fallback_activities(block, used, outdoor_safe, clothing)
                source = ActivitySource.FALLBACK
                logger.info(f"Block {block.id}: model gave no usable plan, using fallback")
            self.state.commit_block(run, block.id, activities, source)
        except GenerationStopped:
            logger.info(f"Block {block.id}: generation stopped")
        except Exception as exc:
            logger.exception(f"Block {block.id}: unexpected error")
            self.state.fail_block(run, block.id, str(exc) or exc.__class__.__name__)
