"""Coalesce bursts of raw output into single parse passes."""

import asyncio
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

_LINE_BREAK_RE = re.compile(r"\r?\n")


class ScheduledCall(Protocol):
    """Handle for a callback scheduled by a ``Scheduler``."""

    def cancel(self) -> None:
        """Prevent the callback from running if it has not run yet."""


class Scheduler(ABC):
    """Abstract source of cancellable delayed callbacks."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Run callback after delay seconds.

        Args:
            delay: Seconds to wait
            callback: Function to invoke with no arguments

        Returns:
            Handle that cancels the pending call

        """


class AsyncioScheduler(Scheduler):
    """Schedule callbacks on an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize scheduler, defaulting to the running loop at call time."""
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Schedule callback with ``loop.call_later``."""
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class ThreadingScheduler(Scheduler):
    """Schedule callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Start a daemon timer thread."""
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class AutoScheduler(Scheduler):
    """Use the running event loop when there is one, a timer thread otherwise."""

    def __init__(self) -> None:
        """Initialize both backing schedulers."""
        self._asyncio = AsyncioScheduler()
        self._threading = ThreadingScheduler()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Pick a backend for the calling context and schedule callback."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self._threading.call_later(delay, callback)
        return self._asyncio.call_later(delay, callback)


class DebounceCoordinator:
    """Buffer text across ``feed`` calls and parse it after a quiet period.

    Complete lines accumulate until no ``feed`` has arrived for
    ``interval_ms``; then every buffered line is handed to ``on_lines`` in
    one call.  A trailing partial line waits for the next ``feed`` to
    complete it, but is treated as complete once the quiet period expires.
    """

    def __init__(
        self,
        on_lines: Callable[[list[str]], None],
        interval_ms: int = 120,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize coordinator with a line consumer and quiet period."""
        self._on_lines = on_lines
        self._interval = interval_ms / 1000
        self._scheduler = scheduler or AutoScheduler()
        self._lock = threading.RLock()
        self._flush_lock = threading.RLock()
        self._lines: list[str] = []
        self._partial = ""
        self._timer: ScheduledCall | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        """True when text is buffered and not yet parsed."""
        with self._lock:
            return bool(self._lines or self._partial)

    def feed(self, text: object) -> None:
        """Append raw output and restart the quiet-period timer."""
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if not isinstance(text, str) or not text:
            return

        with self._lock:
            parts = _LINE_BREAK_RE.split(self._partial + text)
            self._partial = parts.pop()
            self._lines.extend(parts)
            self._reschedule()

    def flush(self) -> None:
        """Parse everything buffered now, including a trailing partial line."""
        with self._flush_lock:
            with self._lock:
                self._cancel_timer()
                lines = self._lines
                if self._partial:
                    lines.append(self._partial)
                self._lines = []
                self._partial = ""
            if lines:
                logger.debug(f"Flushing {len(lines)} buffered lines")
                self._on_lines(lines)

    def stop(self) -> None:
        """Cancel the pending flush and drop unparsed text."""
        with self._lock:
            self._cancel_timer()
            dropped = len(self._lines) + (1 if self._partial else 0)
            if dropped:
                logger.debug(f"Discarding {dropped} unflushed lines")
            self._lines = []
            self._partial = ""

    def _reschedule(self) -> None:
        self._cancel_timer()
        generation = self._generation
        self._timer = self._scheduler.call_later(
            self._interval, lambda: self._on_quiet(generation)
        )

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_quiet(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self.flush()
