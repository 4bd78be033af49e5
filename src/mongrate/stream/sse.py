"""Server-Sent Events framing for job streams."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

from .broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

HEARTBEAT = b": heartbeat\n\n"
CONNECTED = b": connected\n\n"
DEFAULT_HEARTBEAT_INTERVAL = 15.0
DEFAULT_MAX_PENDING = 1000


def format_sse(data: Dict[str, Any]) -> bytes:
    """Frame one JSON payload as an SSE message."""
    return f"data: {json.dumps(data)}\n\n".encode("utf-8")


async def stream_job_events(
    broadcaster: EventBroadcaster,
    job_id: str,
    initial: Optional[Any] = None,
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    max_pending: int = DEFAULT_MAX_PENDING,
) -> AsyncIterator[bytes]:
    """Yield SSE frames for a job until the consumer stops iterating.

    The subscription is made before anything is yielded, so buffered history
    is queued first and live events follow it. Closing the generator (client
    disconnect) removes the subscription; the job itself keeps running.

    A consumer that falls more than ``max_pending`` events behind is
    unsubscribed and the stream ends; reconnecting replays the history.

    Args:
        broadcaster: Source of events.
        job_id: Job to follow.
        initial: Optional event sent ahead of the replayed history.
        heartbeat_interval: Seconds of silence before a heartbeat comment.
        max_pending: Queue bound; never below the replay history size.
    """
    queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=max(max_pending, broadcaster.max_history + 1))
    overflowed = False
    unsubscribe: Optional[Callable[[], None]] = None

    def deliver(event: Any) -> None:
        nonlocal overflowed
        if overflowed:
            return
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            overflowed = True
            logger.warning("Stream client for %s is %d events behind; dropping it", job_id, queue.maxsize)
            if unsubscribe is not None:
                unsubscribe()

    unsubscribe = broadcaster.subscribe(job_id, deliver)
    try:
        yield CONNECTED
        if initial is not None:
            yield format_sse(initial.to_dict())
        while not overflowed:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield HEARTBEAT
                continue
            yield format_sse(event.to_dict())
    finally:
        unsubscribe()
