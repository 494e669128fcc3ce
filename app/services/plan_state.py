"""
Plan state: the single owned record of the current day's plan.

All mutation goes through PlanState methods. Writes coming from a run are
guarded by the run id and the block status so that results arriving after a
stop, or from a superseded run, can never overwrite newer state.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from app.errors import UnknownBlockError
from app.models.planner import (
    DEFAULT_TIME_BLOCKS,
    Activity,
    ActivitySource,
    BlockStateResponse,
    BlockStatus,
    EnvironmentSnapshot,
    Location,
    PlanStateResponse,
    Preferences,
    RunStatus,
    TimeBlock,
    Venue,
)
from app.services.cancellation import CancellationToken
from app.services.plan_events import PlanEventBus

logger = logging.getLogger(__name__)

STOPPED_PLACEHOLDER = "Generation stopped"


@dataclass
class BlockState:
    """Execution state of one block within the current plan."""
    block: TimeBlock
    status: BlockStatus = BlockStatus.EMPTY
    activities: List[Activity] = field(default_factory=list)
    message: Optional[str] = None
    source: Optional[ActivitySource] = None
    run_id: Optional[str] = None

    def to_response(self) -> BlockStateResponse:
        return BlockStateResponse(
            block=self.block,
            status=self.status,
            activities=list(self.activities),
            message=self.message,
            source=self.source,
        )


@dataclass
class GenerationRun:
    """One plan attempt, from trigger to completion or stop."""
    run_id: str
    block_ids: Tuple[int, ...]
    token: CancellationToken = field(default_factory=CancellationToken)
    status: RunStatus = RunStatus.RUNNING
    current_block_id: Optional[int] = None
    completed_block_ids: Set[int] = field(default_factory=set)

    @property
    def is_generating(self) -> bool:
        return self.status == RunStatus.RUNNING

    @property
    def is_stopped(self) -> bool:
        return self.status == RunStatus.STOPPED


class PlanState:
    """Mutable plan for the day, published through the event bus."""

    def __init__(
        self,
        blocks: Sequence[TimeBlock] = DEFAULT_TIME_BLOCKS,
        events: Optional[PlanEventBus] = None,
    ) -> None:
        self.blocks: Tuple[TimeBlock, ...] = tuple(blocks)
        self.events = events or PlanEventBus()
        self.reset()

    # --- queries ---

    @property
    def is_generating(self) -> bool:
        return self.run is not None and self.run.is_generating

    @property
    def run_status(self) -> RunStatus:
        return self.run.status if self.run is not None else RunStatus.IDLE

    @property
    def can_modify(self) -> bool:
        """Modification is offered once a plan exists and nothing is generating."""
        has_plan = any(state.status == BlockStatus.COMPLETE for state in self.block_states.values())
        return has_plan and not self.is_generating

    def block(self, block_id: int) -> TimeBlock:
        state = self.block_states.get(block_id)
        if state is None:
            raise UnknownBlockError(block_id)
        return state.block

    def activities_by_block(self, exclude: Iterable[int] = ()) -> Dict[int, List[Activity]]:
        skipped = set(exclude)
        return {
            block.id: list(self.block_states[block.id].activities)
            for block in self.blocks
            if block.id not in skipped and self.block_states[block.id].activities
        }

    def all_activities(self) -> List[Activity]:
        """Aggregate activity list in block order."""
        return [
            activity
            for block in self.blocks
            for activity in self.block_states[block.id].activities
        ]

    def snapshot(self) -> PlanStateResponse:
        return PlanStateResponse(
            run_status=self.run_status,
            is_generating=self.is_generating,
            location=self.location,
            environment=self.environment,
            outdoor_safe=self.outdoor_safe,
            clothing=self.clothing,
            preferences=self.preferences,
            blocks=[self.block_states[block.id].to_response() for block in self.blocks],
            social_venues=list(self.social_venues),
            local_events=list(self.local_events),
            can_modify=self.can_modify,
            metadata={
                "run_id": self.run.run_id if self.run else None,
                "completed_block_ids": sorted(self.run.completed_block_ids) if self.run else [],
            },
        )

    # --- context mutations ---

    def reset(self) -> None:
        """Full plan reset: the only place preferences are replaced wholesale."""
        self.block_states: Dict[int, BlockState] = {block.id: BlockState(block=block) for block in self.blocks}
        self.preferences = Preferences()
        self.location: Optional[Location] = None
        self.environment: Optional[EnvironmentSnapshot] = None
        self.outdoor_safe: Optional[bool] = None
        self.clothing: Optional[str] = None
        self.social_venues: List[Venue] = []
        self.local_events: List[Venue] = []
        self.run: Optional[GenerationRun] = None

    def reset_blocks(self) -> None:
        """Clear every block back to empty (modify-all)."""
        for state in self.block_states.values():
            state.status = BlockStatus.EMPTY
            state.activities = []
            state.message = None
            state.source = None
            state.run_id = None
        self.events.publish("status", {"content": "Plan cleared"})

    def set_preferences(self, preferences: Preferences) -> None:
        self.preferences = preferences
        self.events.publish("status", {"content": "Preferences updated"})

    def set_location(self, location: Location) -> None:
        self.location = location
        self.events.publish("location", location.model_dump(mode="json"))

    def set_environment(self, environment: EnvironmentSnapshot, clothing: str, outdoor_safe: bool) -> None:
        self.environment = environment
        self.clothing = clothing
        self.outdoor_safe = outdoor_safe
        self.events.publish(
            "environment",
            {
                **environment.model_dump(mode="json"),
                "outdoor_safe": outdoor_safe,
                "clothing": clothing,
            },
        )

    def set_enrichment(self, social_venues: List[Venue], local_events: List[Venue]) -> None:
        self.social_venues = social_venues
        self.local_events = local_events

    # --- run mutations ---

    def begin_run(self, run: GenerationRun) -> None:
        """Attach a new run and mark its blocks as loading."""
        self.run = run
        for block_id in run.block_ids:
            state = self.block_states[block_id]
            state.status = BlockStatus.LOADING
            state.activities = []
            state.message = None
            state.source = None
            state.run_id = run.run_id
            self._publish_block_status(state)

    def _accepts(self, run: GenerationRun, block_id: int) -> bool:
        state = self.block_states.get(block_id)
        if state is None:
            return False
        return (
            not run.token.cancelled
            and state.run_id == run.run_id
            and state.status == BlockStatus.LOADING
        )

    def commit_block(
        self,
        run: GenerationRun,
        block_id: int,
        activities: List[Activity],
        source: ActivitySource,
    ) -> bool:
        """
        Store a block's result.

        Returns:
            False when the write was discarded (stopped or superseded run)
        """
        if not self._accepts(run, block_id):
            logger.debug(f"Discarding late result for block {block_id}")
            return False
        state = self.block_states[block_id]
        state.status = BlockStatus.COMPLETE
        state.activities = list(activities)
        state.source = source
        state.message = None
        run.completed_block_ids.add(block_id)
        self.events.publish(
            "block",
            {
                "block_id": block_id,
                "status": state.status.value,
                "source": source.value,
                "activities": [activity.model_dump(mode="json") for activity in activities],
            },
        )
        return True

    def fail_block(self, run: GenerationRun, block_id: int, message: str) -> bool:
        if not self._accepts(run, block_id):
            return False
        state = self.block_states[block_id]
        state.status = BlockStatus.ERROR
        state.message = message
        self._publish_block_status(state)
        return True

    def report_block_progress(self, run: GenerationRun, block_id: int, text: str) -> None:
        if self._accepts(run, block_id):
            self.events.publish("block_status", {"block_id": block_id, "status": "loading", "message": text})

    def stop_run(self, run: GenerationRun, reason: str = "stopped") -> List[int]:
        """
        Mark a run stopped and reset its loading blocks to the placeholder.

        Complete and errored blocks are left untouched.

        Returns:
            Ids of the blocks that were reset
        """
        run.status = RunStatus.STOPPED
        run.current_block_id = None
        reset: List[int] = []
        for state in self.block_states.values():
            if state.run_id == run.run_id and state.status == BlockStatus.LOADING:
                state.status = BlockStatus.EMPTY
                state.activities = []
                state.message = STOPPED_PLACEHOLDER
                state.source = None
                reset.append(state.block.id)
                self._publish_block_status(state)
        self.events.publish("run_stopped", {"run_id": run.run_id, "reason": reason, "reset_block_ids": reset})
        return reset

    def finish_run(self, run: GenerationRun) -> None:
        """Mark a run completed once every block has settled."""
        if run.status != RunStatus.RUNNING:
            return
        run.status = RunStatus.COMPLETED
        run.current_block_id = None
        self.events.publish(
            "run_completed",
            {
                "run_id": run.run_id,
                "activities": [activity.model_dump(mode="json") for activity in self.all_activities()],
                "can_modify": self.can_modify,
            },
        )

    def _publish_block_status(self, state: BlockState) -> None:
        self.events.publish(
            "block_status",
            {"block_id": state.block.id, "status": state.status.value, "message": state.message},
        )
