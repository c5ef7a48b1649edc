from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

from hunt_analyzer.orchestrator import StreamingOrchestrator

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_DONE = object()
# Strong references so running analyses are not garbage collected mid-run.
_background_runs: set[asyncio.Task] = set()


def format_event(kind: str, payload: Any) -> str:
    return f"event: {kind}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _log_run_outcome(task: asyncio.Task) -> None:
    _background_runs.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Streaming run ended with an error: %s", exc)


async def stream_run(
    orchestrator: StreamingOrchestrator,
    requested_count: Optional[int] = None,
) -> AsyncIterator[str]:
    queue: asyncio.Queue = asyncio.Queue()
    cancel_event = asyncio.Event()

    def emit(kind: str, payload: dict[str, Any]) -> None:
        queue.put_nowait((kind, payload))

    async def _drive() -> None:
        try:
            await orchestrator.run(emit, requested_count, cancel_event)
        finally:
            queue.put_nowait(_DONE)

    task = asyncio.create_task(_drive())
    _background_runs.add(task)
    task.add_done_callback(_log_run_outcome)

    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            kind, payload = item
            yield format_event(kind, payload)
    finally:
        # Client went away or the run settled; either way the loop stops at the next item.
        cancel_event.set()
