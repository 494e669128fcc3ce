"""Planner router - start, stop, modify and observe the day plan."""

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.dependencies import get_planner_session
from app.errors import NoPlanError, PlanBusyError, UnknownBlockError
from app.models.planner import (
    BlockStateResponse,
    ModifyRequest,
    ModifyScope,
    PlanStateResponse,
    RunRequest,
)
from app.services.plan_events import format_sse_event
from app.services.planner_session import PlannerSession

router = APIRouter(prefix="/planner", tags=["planner"])
logger = logging.getLogger(__name__)

# Seconds between keep-alive comments on an idle event stream
KEEPALIVE_INTERVAL = 15.0


@router.get("/state", response_model=PlanStateResponse)
async def get_state(session: PlannerSession = Depends(get_planner_session)):
    """Return the current plan."""
    return session.state.snapshot()


@router.get("/blocks", response_model=List[BlockStateResponse])
async def get_blocks(session: PlannerSession = Depends(get_planner_session)):
    """Return every block card with its status."""
    return session.state.snapshot().blocks


@router.get("/queue")
async def get_queue_status(session: PlannerSession = Depends(get_planner_session)) -> Dict[str, Any]:
    """Report the rate-limited queue depth for display."""
    queue_status = session.queue.status()
    return {
        "depth": queue_status.depth,
        "processing": queue_status.processing,
        "waiting": queue_status.waiting,
    }


@router.post("/run", response_model=PlanStateResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_planner(
    payload: RunRequest,
    session: PlannerSession = Depends(get_planner_session),
):
    """
    Start a fresh plan in the background.

    A running generation is superseded. Progress is published on
    `/planner/events`.
    """
    session.launch(
        session.start(payload.coordinates(), payload.instructions),
        supersede=True,
    )
    # Let the intent publish its first status before answering
    await asyncio.sleep(0)
    return session.state.snapshot()


@router.post("/stop")
async def stop_planner(session: PlannerSession = Depends(get_planner_session)) -> Dict[str, Any]:
    """Stop the running generation; complete blocks are kept."""
    stopped = session.stop()
    return {"stopped": stopped, "run_status": session.state.run_status.value}


@router.post("/modify", response_model=PlanStateResponse, status_code=status.HTTP_202_ACCEPTED)
async def modify_plan(
    payload: ModifyRequest,
    session: PlannerSession = Depends(get_planner_session),
):
    """
    Modify the current plan.

    Scopes:
        all: re-parse `instructions` into preferences and regenerate every block
        block: regenerate `block_id` only (optional `instructions`)
        location: switch to `city` and regenerate everything
    """
    try:
        session.ensure_idle()
        session.ensure_plan()
        if payload.scope == ModifyScope.ALL:
            if not payload.instructions or not payload.instructions.strip():
                raise HTTPException(status_code=422, detail="instructions are required for scope 'all'")
            intent = session.modify_all(payload.instructions)
        elif payload.scope == ModifyScope.BLOCK:
            if payload.block_id is None:
                raise HTTPException(status_code=422, detail="block_id is required for scope 'block'")
            session.state.block(payload.block_id)
            intent = session.modify_block(payload.block_id, payload.instructions)
        else:
            if not payload.city or not payload.city.strip():
                raise HTTPException(status_code=422, detail="city is required for scope 'location'")
            intent = session.modify_location(payload.city)
    except PlanBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except NoPlanError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except UnknownBlockError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    session.launch(intent)
    await asyncio.sleep(0)
    return session.state.snapshot()


@router.get("/events")
async def plan_events(
    request: Request,
    session: PlannerSession = Depends(get_planner_session),
):
    """
    Stream plan events using Server-Sent Events (SSE).

    Events: status, location, environment, block_status, block,
    run_completed, run_stopped, error.
    """
    events = session.state.events
    queue = events.subscribe()

    async def event_stream():
        try:
            yield format_sse_event("state", session.state.snapshot().model_dump(mode="json"))
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event_type, data = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse_event(event_type, data)
        finally:
            events.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
