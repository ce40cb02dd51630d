"""Recurring job scheduler with per-job non-overlap and graceful shutdown.

This module provides the Scheduler class that:
- Owns a single timer loop thread that evaluates job triggers
- Runs each fired job on its own thread
- Coalesces triggers that arrive while the same job is still running
- Coordinates graceful shutdown with a bounded grace period

**Architecture:**

    Scheduler (main)
      ├─ Timer Loop: fires due jobs
      ├─ Job Threads: one per in-flight run, at most one per job name
      └─ Force-stop hooks: run when the grace period is exceeded

**Usage:**

    from CameraVault.CatalogSync.orchestrator import IntervalTrigger, Scheduler

    scheduler = Scheduler()
    scheduler.register("sync", sync_job.run, IntervalTrigger(hours=6), run_on_start=True)
    scheduler.add_force_stop_hook(http_client.close)
    scheduler.start()
    ...
    scheduler.stop(grace_seconds=30)

Job callables receive a :class:`~CameraVault.CatalogSync.cancellation.CancellationToken`
and are expected to check it at safe checkpoints.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from CameraVault.CatalogSync.cancellation import CancellationToken, CancellationTokenGroup
from CameraVault.CatalogSync.orchestrator.triggers import Trigger

__all__ = ["JobStats", "Scheduler"]

logger = logging.getLogger(__name__)

JobFunc = Callable[[CancellationToken], Any]


@dataclass
class JobStats:
    """Counters for one registered job."""

    runs: int = 0
    coalesced: int = 0
    failures: int = 0
    last_started: Optional[datetime] = None
    last_finished: Optional[datetime] = None
    last_error: Optional[str] = None


class _Job:
    def __init__(self, name: str, func: JobFunc, trigger: Trigger, run_on_start: bool) -> None:
        self.name = name
        self.func = func
        self.trigger = trigger
        self.run_on_start = run_on_start
        self.next_run: Optional[datetime] = None
        self.running = threading.Lock()
        self.stats = JobStats()


class Scheduler:
    """Timer-driven job runner.

    Guarantees:
    - at most one running instance per job name; a trigger that fires while
      the job is running is skipped, logged and counted, never queued;
    - jobs with different names may run concurrently;
    - :meth:`stop` stops new triggers, cancels job tokens and waits up to the
      grace period before invoking force-stop hooks.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        tick_seconds: float = 0.5,
    ) -> None:
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.tick_seconds = tick_seconds
        self._jobs: Dict[str, _Job] = {}
        self._hooks: List[Callable[[], Any]] = []
        self._tokens = CancellationTokenGroup()
        self._threads: Dict[str, threading.Thread] = {}
        self._mutex = threading.Lock()
        self._stop = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self, name: str, func: JobFunc, trigger: Trigger, run_on_start: bool = False
    ) -> None:
        with self._mutex:
            if name in self._jobs:
                raise ValueError(f"Job '{name}' is already registered")
            self._jobs[name] = _Job(name, func, trigger, run_on_start)
        logger.info(f"Registered job {name}: {trigger!r} run_on_start={run_on_start}")

    def add_force_stop_hook(self, hook: Callable[[], Any]) -> None:
        """Register a callable run when jobs outlive the shutdown grace period."""
        self._hooks.append(hook)

    def job_names(self) -> List[str]:
        with self._mutex:
            return list(self._jobs)

    def stats(self, name: str) -> JobStats:
        return self._get(name).stats

    def next_run(self, name: str) -> Optional[datetime]:
        return self._get(name).next_run

    def is_running(self, name: str) -> bool:
        return self._get(name).running.locked()

    def _get(self, name: str) -> _Job:
        with self._mutex:
            try:
                return self._jobs[name]
            except KeyError:
                raise KeyError(f"Unknown job '{name}'") from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Schedule every job and start the timer loop."""
        if self._loop_thread is not None:
            raise RuntimeError("Scheduler already started")

        now = self._clock()
        with self._mutex:
            jobs = list(self._jobs.values())
        for job in jobs:
            job.next_run = job.trigger.next_fire(now)

        self._loop_thread = threading.Thread(
            target=self._timer_loop, daemon=True, name="cameravault-scheduler"
        )
        self._loop_thread.start()
        logger.info(f"Scheduler started with {len(jobs)} jobs")

        for job in jobs:
            if job.run_on_start:
                self._fire(job, reason="start")

    def stop(self, grace_seconds: float = 30.0) -> bool:
        """Stop triggering, cancel running jobs and wait for them.

        Returns:
            True if every job reached a safe checkpoint within the grace period.
        """
        logger.info(f"Scheduler stopping (grace={grace_seconds}s)")
        self._stop.set()
        if self._loop_thread is not None and self._loop_thread is not threading.current_thread():
            self._loop_thread.join(timeout=max(self.tick_seconds * 4, 1.0))

        self._tokens.cancel_all()

        deadline = time.monotonic() + grace_seconds
        for thread in self._active_threads():
            thread.join(timeout=max(0.0, deadline - time.monotonic()))

        lingering = [t.name for t in self._active_threads()]
        if not lingering:
            logger.info("Scheduler stopped")
            return True

        logger.warning(f"Grace period exceeded; forcing stop of {lingering}")
        for hook in self._hooks:
            try:
                hook()
            except Exception:
                logger.exception(f"Force-stop hook {hook!r} failed")
        for thread in self._active_threads():
            thread.join(timeout=5.0)
        return False

    def _active_threads(self) -> List[threading.Thread]:
        with self._mutex:
            return [t for t in self._threads.values() if t.is_alive()]

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def trigger(self, name: str) -> bool:
        """Fire ``name`` now; returns False if it was coalesced or stopping."""
        return self._fire(self._get(name), reason="manual")

    def _timer_loop(self) -> None:
        logger.debug("Timer loop started")
        while not self._stop.is_set():
            now = self._clock()
            with self._mutex:
                jobs = list(self._jobs.values())
            for job in jobs:
                if job.next_run is not None and job.next_run <= now:
                    job.next_run = job.trigger.next_fire(now)
                    self._fire(job, reason="timer")
            self._stop.wait(self.tick_seconds)
        logger.debug("Timer loop stopped")

    def _fire(self, job: _Job, *, reason: str) -> bool:
        if self._stop.is_set():
            logger.info(f"Not firing {job.name}: scheduler is stopping")
            return False
        if not job.running.acquire(blocking=False):
            job.stats.coalesced += 1
            logger.warning(
                f"Job {job.name} still running; {reason} trigger coalesced "
                f"(coalesced={job.stats.coalesced})"
            )
            return False

        token = self._tokens.create_token()
        thread = threading.Thread(
            target=self._run_job,
            args=(job, token),
            daemon=True,
            name=f"cameravault-job-{job.name}",
        )
        with self._mutex:
            self._threads[job.name] = thread
        job.stats.runs += 1
        job.stats.last_started = self._clock()
        logger.info(f"Job {job.name} fired ({reason})")
        try:
            thread.start()
        except RuntimeError:
            self._tokens.remove_token(token)
            job.running.release()
            raise
        return True

    def _run_job(self, job: _Job, token: CancellationToken) -> None:
        try:
            job.func(token)
        except Exception as e:
            job.stats.failures += 1
            job.stats.last_error = repr(e)
            logger.exception(f"Job {job.name} failed")
        finally:
            job.stats.last_finished = self._clock()
            self._tokens.remove_token(token)
            job.running.release()
