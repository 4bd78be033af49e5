"""In-process publish/subscribe for job stream events.

Every job id has its own subscriber list and a bounded history of recent
events. A subscriber that attaches late first receives the retained history,
in order, and then live events. Delivery is synchronous and happens in the
order events were published.
"""

import itertools
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]

DEFAULT_HISTORY_SIZE = 100


class EventBroadcaster:
    """Fan out events per job to any number of subscribers."""

    def __init__(self, max_history: int = DEFAULT_HISTORY_SIZE):
        self.max_history = max_history
        self._subscribers: Dict[str, Dict[int, Subscriber]] = {}
        self._history: Dict[str, Deque[Any]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, job_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback and replay retained history to it.

        Replay completes before this returns, so no live event can reach the
        callback ahead of an older buffered one.

        Returns:
            A function that removes the subscription. Calling it again is a
            no-op.
        """
        token = next(self._ids)
        self._subscribers.setdefault(job_id, {})[token] = callback

        for event in list(self._history.get(job_id, ())):
            self._deliver(job_id, callback, event)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(job_id)
            if subscribers is None or token not in subscribers:
                return
            del subscribers[token]
            if not subscribers:
                del self._subscribers[job_id]

        return unsubscribe

    def publish(self, job_id: str, event: Any) -> None:
        """Record the event and hand it to every current subscriber."""
        history = self._history.get(job_id)
        if history is None:
            history = self._history[job_id] = deque(maxlen=self.max_history)
        history.append(event)

        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return
        for callback in list(subscribers.values()):
            self._deliver(job_id, callback, event)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def get_history(self, job_id: str) -> List[Any]:
        """Copy of the retained events for a job, oldest first."""
        return list(self._history.get(job_id, ()))

    def clear_history(self, job_id: str) -> None:
        """Drop retained events. Subscribers are left attached."""
        self._history.pop(job_id, None)

    def _deliver(self, job_id: str, callback: Subscriber, event: Any) -> None:
        try:
            callback(event)
        except Exception:
            logger.exception("Stream subscriber for %s raised", job_id)
