"""Event dispatcher that drives PowerTool reconciliation.

Keys are ``(namespace, name)`` pairs. They enter a work queue from three
sources: the cluster-wide watch, the periodic resync, and the requeue delay
each reconciliation pass returns. Worker tasks pull keys from the queue and
run the blocking reconciler in a thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kubernetes import watch

from powertool_operator.core.config import Settings, get_settings
from powertool_operator.services.cluster import ClusterService, get_cluster_service
from powertool_operator.services.reconciler import (
    FATAL_ERRORS,
    PowerToolReconciler,
    ReconcileResult,
    get_reconciler,
)

logger = logging.getLogger(__name__)

JobKey = tuple[str, str]

# Upper bound on waiting for the watch thread during stop
WATCH_JOIN_TIMEOUT_SECONDS = 5.0


class ReconcileQueue:
    """Deduplicating delay queue with per-key exclusivity.

    A key sits in the queue at most once. While a worker holds a key, adding
    it again only marks it dirty; it goes back on the queue when the worker
    calls :meth:`done`. Delayed adds keep the earliest due time.

    All methods must be called from the event loop thread. Other threads go
    through ``loop.call_soon_threadsafe``.
    """

    def __init__(self, backoff_base: float = 5.0, backoff_max: float = 300.0) -> None:
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: asyncio.Queue[Hashable] = asyncio.Queue()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._failures: dict[Hashable, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def pending_delayed(self) -> int:
        """Number of keys waiting on a delay."""
        return len(self._timers)

    def is_processing(self, key: Hashable) -> bool:
        return key in self._processing

    def add(self, key: Hashable) -> None:
        """Queue a key for processing now."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        due = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= due:
                return
            existing.cancel()

        self._timers[key] = loop.call_at(due, self._fire, key)

    def _fire(self, key: Hashable) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def backoff_delay(self, key: Hashable) -> float:
        """Delay for the key's current failure count."""
        failures = self._failures.get(key, 0)
        if failures <= 0:
            return 0.0
        return min(self.backoff_base * 2 ** (failures - 1), self.backoff_max)

    def add_rate_limited(self, key: Hashable) -> float:
        """Record a failure for the key and queue it after its backoff delay."""
        self._failures[key] = self._failures.get(key, 0) + 1
        delay = self.backoff_delay(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the key's failure count."""
        self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> Hashable:
        """Wait for the next key and mark it as being processed."""
        key = await self._queue.get()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: Hashable) -> None:
        """Release a key; if it was added while held, queue it again."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        """Stop accepting keys and cancel pending delays."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


@dataclass
class ControllerMetrics:
    """Running totals for the PowerTool controller."""

    started_at: datetime | None = None
    reconciles: int = 0
    errors: int = 0
    watch_events: int = 0
    watch_restarts: int = 0
    resyncs: int = 0
    last_error: str | None = None
    last_results: dict[str, dict] = field(default_factory=dict)


class PowerToolController:
    """Background controller that reconciles PowerTool jobs.

    Example:
        ```python
        controller = PowerToolController()
        await controller.start()  # Start watch, resync and workers
        # ... operator runs ...
        await controller.stop()   # Stop on shutdown
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        reconciler: PowerToolReconciler | None = None,
        cluster: ClusterService | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            settings: Operator settings (uses default if not provided)
            reconciler: Optional PowerToolReconciler instance
            cluster: Optional ClusterService used for watch and resync
        """
        self.settings = settings or get_settings()
        self._reconciler = reconciler
        self._cluster = cluster
        self.queue: ReconcileQueue | None = None
        self.metrics = ControllerMetrics()
        self._tasks: list[asyncio.Task] = []
        self._watch_thread: threading.Thread | None = None
        self._watcher: watch.Watch | None = None
        self._stop_event = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False

    @property
    def reconciler(self) -> PowerToolReconciler:
        """Get the reconciler instance."""
        if self._reconciler is None:
            self._reconciler = get_reconciler()
        return self._reconciler

    @property
    def cluster(self) -> ClusterService:
        """Get the ClusterService, using global instance if not set."""
        if self._cluster is None:
            self._cluster = get_cluster_service()
        return self._cluster

    @property
    def is_running(self) -> bool:
        """Check if the controller is running."""
        return self._running and bool(self._tasks)

    def enqueue(self, namespace: str, name: str) -> bool:
        """Queue a job for reconciliation. Returns False if the controller is stopped."""
        if self.queue is None or not self._running:
            return False
        self.queue.add((namespace, name))
        return True

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------

    async def process_next(self) -> JobKey:
        """Take one key off the queue, reconcile it, and schedule the next pass."""
        assert self.queue is not None
        key = await self.queue.get()
        namespace, name = key
        try:
            result = await asyncio.to_thread(self.reconciler.reconcile, namespace, name)
        except Exception as e:
            self._record_error(key, e)
            delay = self.queue.add_rate_limited(key)
            logger.info("Retrying PowerTool %s/%s in %.0f seconds", namespace, name, delay)
        else:
            self._record_result(key, result)
            self.queue.forget(key)
            if result.requeue_after is not None:
                self.queue.add_after(key, result.requeue_after)
        finally:
            self.queue.done(key)
        return key

    def _record_result(self, key: JobKey, result: ReconcileResult) -> None:
        self.metrics.reconciles += 1
        if not result.found:
            self.metrics.last_results.pop(f"{key[0]}/{key[1]}", None)
            return
        self.metrics.last_results[f"{key[0]}/{key[1]}"] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "phase": result.phase,
            "requeueAfter": result.requeue_after,
            "created": list(result.created),
            "failed": list(result.failed),
            "error": None,
        }

    def _record_error(self, key: JobKey, error: Exception) -> None:
        namespace, name = key
        if isinstance(error, FATAL_ERRORS):
            logger.error("Reconcile of PowerTool %s/%s failed: %s", namespace, name, error)
        else:
            logger.exception("Unexpected error reconciling PowerTool %s/%s", namespace, name)

        self.metrics.reconciles += 1
        self.metrics.errors += 1
        self.metrics.last_error = f"{namespace}/{name}: {error}"
        self.metrics.last_results[f"{namespace}/{name}"] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "phase": None,
            "requeueAfter": None,
            "created": [],
            "failed": [],
            "error": str(error),
        }

    async def _worker(self, worker_id: int) -> None:
        logger.debug("PowerTool worker %d started", worker_id)
        while self._running:
            try:
                await self.process_next()
            except asyncio.CancelledError:
                break

    # -------------------------------------------------------------------------
    # Event sources
    # -------------------------------------------------------------------------

    async def resync(self) -> int:
        """Queue every PowerTool in the cluster."""
        jobs = await asyncio.to_thread(self.cluster.list_powertools)
        for job in jobs:
            self.enqueue(job.namespace, job.name)
        self.metrics.resyncs += 1
        return len(jobs)

    async def _resync_loop(self) -> None:
        interval = self.settings.resync_interval_seconds
        logger.info(f"PowerTool resync running every {interval} seconds")

        while self._running:
            try:
                queued = await self.resync()
                logger.debug("Resync queued %d PowerTools", queued)
            except Exception as e:
                logger.error(f"Error listing PowerTools for resync: {e}")

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    def _watch_loop(self) -> None:
        """Stream PowerTool events until stopped, restarting after timeouts and errors."""
        assert self._loop is not None
        while not self._stop_event.is_set():
            watcher = watch.Watch()
            self._watcher = watcher
            try:
                for event_type, job in self.cluster.watch_powertools(
                    watcher, self.settings.watch_timeout_seconds
                ):
                    if self._stop_event.is_set():
                        break
                    self.metrics.watch_events += 1
                    if event_type == "DELETED":
                        continue
                    self._loop.call_soon_threadsafe(self.enqueue, job.namespace, job.name)
            except Exception as e:
                logger.error(f"PowerTool watch failed: {e}")
                self._stop_event.wait(self.settings.error_backoff_base_seconds)
            finally:
                watcher.stop()
                self._watcher = None

            if not self._stop_event.is_set():
                self.metrics.watch_restarts += 1

        logger.info("PowerTool watch stopped")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start workers, the resync loop and the watch thread.

        Does nothing if the controller is disabled in settings or already running.
        """
        if not self.settings.controller_enabled:
            logger.info("PowerTool controller is disabled in settings")
            return

        if self._running:
            logger.warning("PowerTool controller is already running")
            return

        self._loop = asyncio.get_running_loop()
        self.queue = ReconcileQueue(
            backoff_base=self.settings.error_backoff_base_seconds,
            backoff_max=self.settings.error_backoff_max_seconds,
        )
        self.metrics = ControllerMetrics(started_at=datetime.now(UTC))
        self._stop_event.clear()
        self._running = True

        self._tasks = [
            asyncio.create_task(self._worker(i))
            for i in range(self.settings.max_concurrent_reconciles)
        ]
        self._tasks.append(asyncio.create_task(self._resync_loop()))

        self._watch_thread = threading.Thread(
            target=self._watch_loop, name="powertool-watch", daemon=True
        )
        self._watch_thread.start()

        logger.info(
            "PowerTool controller started with %d workers",
            self.settings.max_concurrent_reconciles,
        )

    async def stop(self) -> None:
        """Stop the controller.

        In-flight reconciles finish in their threads; their results are dropped.
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._watcher is not None:
            self._watcher.stop()
        if self.queue is not None:
            self.queue.shutdown()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []

        if self._watch_thread is not None:
            await asyncio.to_thread(self._watch_thread.join, WATCH_JOIN_TIMEOUT_SECONDS)
            if self._watch_thread.is_alive():
                logger.warning(
                    "PowerTool watch did not stop within %.0f seconds", WATCH_JOIN_TIMEOUT_SECONDS
                )
            self._watch_thread = None

        logger.info("PowerTool controller stopped")


# Global controller instance
_powertool_controller: PowerToolController | None = None


def get_powertool_controller() -> PowerToolController:
    """Get the global PowerToolController instance."""
    global _powertool_controller
    if _powertool_controller is None:
        _powertool_controller = PowerToolController()
    return _powertool_controller
