"""
Generation-run tagging for log records.

Each block task of a run executes inside `run_context`, so every log line
emitted while a plan is generated can be traced back to its run.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_current_run: ContextVar[str | None] = ContextVar("current_run", default=None)


def get_run_id() -> str | None:
    return _current_run.get()


@contextmanager
def run_context(run_id: str) -> Iterator[str]:
    """Tag everything executed in the block (and tasks spawned from it) with `run_id`."""
    token = _current_run.set(run_id)
    try:
        yield run_id
    finally:
        _current_run.reset(token)
