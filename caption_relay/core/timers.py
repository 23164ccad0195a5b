"""Scheduled callbacks with an explicit cancellation token per timer.

WHY: The silence finalizer re-arms its timer on nearly every recognition
event. Relying on "clear whatever timer is stored in the attribute"
makes it easy to fire a timer that was meant to be dead. Giving every
armed timer its own handle turns re-arming into cancel-old-handle then
schedule-new-handle, and a cancelled handle can never fire.

HOW: TimerHandle wraps the callback and tracks cancelled/fired. The
AsyncioScheduler arms handles on the running event loop with
loop.call_later; the handle also cancels the loop's own timer.

RULES:
- A handle fires at most once, and never after cancel()
- cancel() after firing is a no-op returning False
- Delays are milliseconds
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional


class TimerHandle:
    """Cancellation token for one armed timer."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._cancelled = False
        self._fired = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> bool:
        """Disarm the timer. Returns True if it was still armed."""
        if not self.active:
            return False
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
        return True

    def fire(self) -> None:
        if not self.active:
            return
        self._fired = True
        self._callback()


class AsyncioScheduler:
    """Arms TimerHandles on an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TimerHandle(callback)
        handle._loop_handle = loop.call_later(delay_ms / 1000.0, handle.fire)
        return handle
