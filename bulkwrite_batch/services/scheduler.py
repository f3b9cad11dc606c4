"""
Job schedulers -- run a unit of work at or after a delay.

Contract:
    ``JobScheduler.schedule_at(delay_seconds, unit_of_work)`` registers the
    unit and returns a handle.  The unit runs zero or one time, at or after
    the delay, possibly on another thread, possibly before ``schedule_at``
    returns.  Callers must be correct in every one of those cases.

    ``InlineScheduler`` runs the unit immediately, inside ``schedule_at``
    (test and simulation harness).  ``DeferredScheduler`` keeps a due-time
    heap driven by the injected Clock; ``tick()`` runs due units and
    ``start()`` / ``stop()`` run a background polling thread.

A unit that raises is logged and never propagates out of the scheduler:
once registered, the unit's outcome is the unit's own business.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from datetime import datetime, timedelta
from typing import Callable, Protocol, runtime_checkable
from uuid import uuid4

from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")

UnitOfWork = Callable[[], object]


@runtime_checkable
class JobScheduler(Protocol):
    """Deferred execution facility consumed by the RetryHandler."""

    def schedule_at(self, delay_seconds: float, unit_of_work: UnitOfWork) -> str: ...


def _run_unit(handle: str, unit: UnitOfWork) -> bool:
    try:
        unit()
        return True
    except Exception:
        logger.exception("scheduled_unit_failed", extra={"handle": handle})
        return False


class InlineScheduler:
    """Runs every unit synchronously inside ``schedule_at``.

    The delay is recorded, not waited for.
    """

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, float]] = []

    def schedule_at(self, delay_seconds: float, unit_of_work: UnitOfWork) -> str:
        handle = f"inline-{uuid4()}"
        self.scheduled.append((handle, delay_seconds))
        logger.debug("inline_unit_started", extra={"handle": handle, "delay_seconds": delay_seconds})
        _run_unit(handle, unit_of_work)
        return handle


class DeferredScheduler:
    """In-process, clock-driven scheduler.

    Contract:
        - ``schedule_at()`` never runs the unit; it only queues it.
        - ``tick()`` runs every unit whose due time has passed, earliest
          first, ties in scheduling order (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT durable: queued units are lost with the process.  Retry job
          rows stay PENDING and can be rerun by id.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval_seconds
        self._heap: list[tuple[datetime, int, str, UnitOfWork]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule_at(self, delay_seconds: float, unit_of_work: UnitOfWork) -> str:
        if delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}")
        if not callable(unit_of_work):
            raise TypeError("unit_of_work must be callable")
        handle = f"deferred-{uuid4()}"
        due_at = self._clock.now() + timedelta(seconds=delay_seconds)
        with self._lock:
            heapq.heappush(self._heap, (due_at, next(self._seq), handle, unit_of_work))
        logger.info(
            "unit_scheduled",
            extra={"handle": handle, "delay_seconds": delay_seconds, "due_at": due_at},
        )
        return handle

    def tick(self) -> int:
        """Run all due units.  Returns the number of units run."""
        ran = 0
        while True:
            # Background mode: honour the stop signal between units
            if self._stop_event.is_set() and self.is_running:
                break
            with self._lock:
                if not self._heap or self._heap[0][0] > self._clock.now():
                    break
                _, _, handle, unit = heapq.heappop(self._heap)
            _run_unit(handle, unit)
            ran += 1
        return ran

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="retry-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"poll_interval": self._poll_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the polling thread to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._heap)

    def next_due_at(self) -> datetime | None:
        with self._lock:
            return self._heap[0][0] if self._heap else None

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._poll_interval)
