"""
Event Loop

Single worker thread that serializes transport callbacks and timers for the
chat client. Every callback queued here runs on the same thread, one at a
time, in the order it was queued.
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set, Tuple

from campus_chat.shared.exceptions import SchedulerError
from campus_chat.shared.protocols import Scheduler


logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class EventLoopStats:
    """Statistics for the event loop."""
    callbacks_run: int = 0
    callbacks_failed: int = 0
    timers_scheduled: int = 0
    timers_cancelled: int = 0
    pending_timers: int = 0


class LoopTimer:
    """Handle for a delayed callback; firing hands the callback back to the loop."""

    def __init__(self, loop: "EventLoop", delay: float,
                 callback: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        self._loop = loop
        self.delay = delay
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the call if it has not run yet."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        self._loop._forget_timer(self, cancelled=True)

    def _start(self) -> None:
        self._timer = threading.Timer(self.delay, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self._loop.call_soon(self._run)
        except SchedulerError:
            logger.debug("Timer fired after loop shutdown, dropping callback")

    def _run(self) -> None:
        self._loop._forget_timer(self, cancelled=False)
        if not self._cancelled:
            self._callback(*self._args)


class EventLoop(Scheduler):
    """
    Single-threaded callback loop.

    Producers on any thread queue work with ``call_soon``/``call_later``; a
    daemon worker thread drains the queue. Exceptions raised by callbacks are
    logged and never stop the loop.
    """

    _ids = itertools.count(1)

    def __init__(self, name: Optional[str] = None) -> None:
        """
        Initialize the event loop.

        Args:
            name: Worker thread name.
        """
        self.name = name or f"campus-chat-loop-{next(self._ids)}"
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._timers: Set[LoopTimer] = set()
        self._stats = EventLoopStats()

    def start(self) -> "EventLoop":
        """Start the worker thread. Calling it again is a no-op."""
        with self._lock:
            if self._shutdown_event.is_set():
                raise SchedulerError("Event loop is shutdown")
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
                self._thread.start()
                logger.debug(f"Event loop {self.name} started")
        return self

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._shutdown_event.is_set()

    def in_loop_thread(self) -> bool:
        """Whether the caller runs on the loop's worker thread."""
        return self._thread is not None and threading.current_thread() is self._thread

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """
        Queue a callback to run on the loop.

        Raises:
            SchedulerError: If the loop is shutdown.
        """
        if self._shutdown_event.is_set():
            raise SchedulerError("Event loop is shutdown")
        if self._thread is None:
            self.start()
        self._queue.put((callback, args))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> LoopTimer:
        """
        Queue a callback to run on the loop after ``delay`` seconds.

        Returns:
            Handle whose ``cancel()`` prevents the call.

        Raises:
            SchedulerError: If the loop is shutdown.
        """
        if self._shutdown_event.is_set():
            raise SchedulerError("Event loop is shutdown")
        if self._thread is None:
            self.start()

        handle = LoopTimer(self, max(0.0, delay), callback, args)
        with self._lock:
            self._timers.add(handle)
            self._stats.timers_scheduled += 1
        handle._start()
        return handle

    def stop(self, timeout: float = 2.0) -> None:
        """
        Cancel pending timers and stop the worker thread.

        Callbacks already queued still run before the worker exits.
        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()

        with self._lock:
            timers = list(self._timers)
        for timer in timers:
            timer.cancel()

        self._queue.put(_STOP)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Event loop {self.name} did not shutdown gracefully")
        logger.debug(f"Event loop {self.name} stopped")

    def get_stats(self) -> EventLoopStats:
        """Get a snapshot of loop statistics."""
        with self._lock:
            return EventLoopStats(
                callbacks_run=self._stats.callbacks_run,
                callbacks_failed=self._stats.callbacks_failed,
                timers_scheduled=self._stats.timers_scheduled,
                timers_cancelled=self._stats.timers_cancelled,
                pending_timers=len(self._timers),
            )

    def _forget_timer(self, timer: LoopTimer, cancelled: bool) -> None:
        with self._lock:
            if timer in self._timers:
                self._timers.discard(timer)
                if cancelled:
                    self._stats.timers_cancelled += 1

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break

            callback, args = item
            try:
                callback(*args)
                with self._lock:
                    self._stats.callbacks_run += 1
            except Exception:
                with self._lock:
                    self._stats.callbacks_failed += 1
                logger.exception(f"Event loop callback {getattr(callback, '__name__', callback)!r} failed")
