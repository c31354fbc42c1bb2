"""
Ouvidoria Dashboard — Debouncer
────────────────────────────────
Trailing-edge debounce on the running asyncio loop.

    Idle ──trigger()──▶ Pending ──delay elapses──▶ callback() ──▶ Idle
                          │  ▲
                          └──┘ trigger() again resets the timer

Only the last trigger() in a burst is delivered. Without a running loop
(plain synchronous callers, scripts) the callback fires immediately.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

log = logging.getLogger("dash.debounce")


class Debouncer:

    def __init__(self, delay_ms: float, callback: Callable[..., Any], name: str = "debounce"):
        self.delay_s  = max(0.0, delay_ms / 1000)
        self.callback = callback
        self.name     = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args):
        """Arm (or re-arm) the timer; `args` of the latest call win."""
        self._args = args
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug(f"{self.name}: no running loop, firing synchronously")
            self._fire()
            return
        self._handle = loop.call_later(self.delay_s, self._fire)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def flush(self) -> bool:
        """Fire a pending callback now. Returns False when nothing was pending."""
        if not self.cancel():
            return False
        self._fire()
        return True

    def _fire(self):
        self._handle = None
        args, self._args = self._args, ()
        try:
            result = self.callback(*args)
            if asyncio.iscoroutine(result):
                self._schedule(result)
        except Exception as e:
            log.error(f"{self.name}: debounced callback failed: {e!r}", exc_info=True)

    def _schedule(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        task.add_done_callback(self._report)

    def _report(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"{self.name}: debounced coroutine failed: {exc!r}")
