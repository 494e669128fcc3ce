"""Error types shared by the planning services.

Transient provider failures never surface through these types: the
resolver, environment and gateway layers recover them locally. What remains
is cancellation, queue bookkeeping and the few user-facing conflicts.
"""


class PlannerError(Exception):
    """Base exception for planner errors."""

    pass


class QueueError(PlannerError):
    """Base exception for request queue failures."""

    pass


class QueueTimeoutError(QueueError):
    """Raised when an item waited in the queue longer than its timeout.

    Attributes:
        kind: Kind label of the expired item
        waited: Seconds the item spent queued
    """

    def __init__(self, kind: str, waited: float) -> None:
        self.kind = kind
        self.waited = waited
        super().__init__(f"Queued '{kind}' request timed out after {waited:.1f}s")


class QueueCancelledError(QueueError):
    """Raised for queued items rejected by an explicit clear()."""

    pass


class GenerationStopped(PlannerError):
    """Raised when a stop request aborts generation.

    This is a neutral outcome, not a failure: callers must not retry it
    and must not report it as an error.
    """

    pass


class LocationNotFoundError(PlannerError):
    """Raised when forward geocoding finds no match for a city name."""

    pass


class PlanBusyError(PlannerError):
    """Raised when a modification is requested while a run is generating."""

    pass


class UnknownBlockError(PlannerError):
    """Raised for a block id that is not part of the configured day."""

    def __init__(self, block_id: int) -> None:
        self.block_id = block_id
        super().__init__(f"Unknown time block: {block_id}")


class NoPlanError(PlannerError):
    """Raised when a modification is requested before any plan exists."""

    pass
