"""Coalesce streamed text into fewer, larger deltas."""

import asyncio
from typing import Callable, List, Optional


class TextBatcher:
    """Buffer text chunks and emit them at most once per interval.

    The first chunk after a flush arms a timer; when it fires, everything
    buffered since is emitted as one string. ``flush`` emits immediately and
    is used before events that must not overtake buffered text.
    """

    def __init__(self, emit: Callable[[str], None], interval: float = 0.1):
        self.emit = emit
        self.interval = interval
        self._pending: List[str] = []
        self._timer: Optional[asyncio.TimerHandle] = None

    def add(self, text: str) -> None:
        if not text:
            return
        self._pending.append(text)
        if self.interval <= 0:
            self.flush()
        elif self._timer is None:
            self._timer = asyncio.get_running_loop().call_later(self.interval, self.flush)

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._pending:
            return
        text = "".join(self._pending)
        self._pending.clear()
        self.emit(text)

    @property
    def pending(self) -> str:
        return "".join(self._pending)
