"""Server-Sent-Events adapter for progress channels.

The operation runs as its own task and produces into the channel; the
response generator only consumes it.  Losing the client therefore marks
the session disconnected without cancelling the operation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from fastapi.responses import StreamingResponse

from spacc.services.progress_service import EventKind, run_with_progress

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from spacc.services.progress_service import (
        ProgressChannel,
        ProgressEvent,
        ProgressPlan,
        ProgressSessionManager,
    )

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: ProgressEvent) -> str:
    """Frame one event; heartbeats become comment frames."""
    if event.kind is EventKind.HEARTBEAT:
        return ":ping\n\n"
    return f"event: {event.kind.value}\ndata: {json.dumps(event.data, default=str)}\n\n"


async def _event_stream(
    manager: ProgressSessionManager, channel: ProgressChannel
) -> AsyncIterator[str]:
    try:
        async for event in channel.events():
            yield format_sse(event)
    except Exception as exc:
        logger.error("SSE stream for session %s failed: %s", channel.session_id, exc)
    finally:
        if not channel.closed:
            manager.mark_disconnected(channel.session_id)


def stream_operation(
    manager: ProgressSessionManager,
    plan: ProgressPlan,
    operation: Callable[[ProgressChannel], Awaitable[T]],
    *,
    to_result: Callable[[T], Any],
    summarize: Callable[[T], dict[str, Any]] | None = None,
) -> StreamingResponse:
    """Start ``operation`` in the background and stream its events."""
    channel = manager.open(plan)
    task = asyncio.create_task(
        run_with_progress(channel, operation, to_result=to_result, summarize=summarize)
    )
    manager.track(task)
    return StreamingResponse(
        _event_stream(manager, channel),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Session-Id": channel.session_id},
    )
