"""
In-process job queue with a fixed-size worker pool.

Each worker thread runs one item at a time. Items for a job id that is
already being processed are held back until that attempt finishes, so a
job's pipeline never runs twice concurrently.
"""

import logging
import threading
import uuid
from collections import deque
from typing import Any, Callable, Optional

from audiojobs.core.constants import WORKER_COUNT
from audiojobs.core.error_codes import QueueClosedError
from audiojobs.core.models_sqlite import WorkItem

logger = logging.getLogger(__name__)


class QueueState:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueHandle:
    """Opaque handle returned by enqueue; tracks one item to completion."""

    def __init__(self, item: WorkItem):
        self.id = str(uuid.uuid4())
        self.item = item
        self.state = QueueState.WAITING
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[["QueueHandle"], None]] = []

    @property
    def job_id(self) -> str:
        return self.item.job_id

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the item finishes. Returns False on timeout."""
        return self._done.wait(timeout)

    def add_done_callback(self, fn: Callable[["QueueHandle"], None]):
        """Call fn(handle) once the item finishes; immediately if it already has."""
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(fn)
                return
        fn(self)

    def _finish(self, state: str, result: Any = None, error: BaseException | None = None):
        with self._lock:
            self.state = state
            self.result = result
            self.error = error
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            try:
                fn(self)
            except Exception:
                logger.exception("Done callback failed for %s", self)

    def __repr__(self):
        return f"<QueueHandle {self.id} job={self.job_id} state={self.state}>"


class WorkQueue:
    """FIFO of WorkItems consumed by a pool of worker threads."""

    def __init__(self, workers: int = WORKER_COUNT, name: str = "audio-processing"):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.name = name
        self.workers = workers
        self._handler: Optional[Callable[[WorkItem], Any]] = None
        self._cond = threading.Condition()
        self._pending: deque[QueueHandle] = deque()
        self._deferred: dict[str, deque[QueueHandle]] = {}
        self._active: set[str] = set()
        self._threads: list[threading.Thread] = []
        self._accepting = True
        self._stopping = False

    # ── Registration / lifecycle ──────────────────────────────────────

    def process(self, handler: Callable[[WorkItem], Any]):
        """Register the function every worker runs for each item."""
        if self._handler is not None:
            raise RuntimeError(f"Queue {self.name} already has a handler")
        self._handler = handler

    def start(self):
        """Start the worker threads."""
        if self._handler is None:
            raise RuntimeError(f"Queue {self.name} has no handler registered")
        if self._threads:
            return
        for n in range(self.workers):
            thread = threading.Thread(target=self._worker_loop,
                                      name=f"{self.name}-{n}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Queue %s started with %d workers", self.name, self.workers)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def shutdown(self, drain: bool = True, timeout: float | None = None):
        """
        Stop accepting work, optionally wait for queued items, then stop workers.
        Items still queued when the workers stop are marked failed.
        """
        with self._cond:
            self._accepting = False
            if drain and self._threads:
                self._cond.wait_for(self._idle, timeout)
            self._stopping = True
            abandoned = list(self._pending)
            for held in self._deferred.values():
                abandoned.extend(held)
            self._pending.clear()
            self._deferred.clear()
            self._cond.notify_all()

        for handle in abandoned:
            handle._finish(QueueState.FAILED, error=QueueClosedError("Queue shut down"))
        if abandoned:
            logger.warning("Queue %s dropped %d unprocessed items", self.name, len(abandoned))

        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Queue %s stopped", self.name)

    # ── Producer side ─────────────────────────────────────────────────

    def enqueue(self, item: WorkItem) -> QueueHandle:
        handle = QueueHandle(item)
        with self._cond:
            if not self._accepting:
                raise QueueClosedError()
            self._pending.append(handle)
            self._cond.notify()
        logger.debug("Enqueued job %s as %s", item.job_id, handle.id)
        return handle

    # ── Worker side ───────────────────────────────────────────────────

    def _idle(self) -> bool:
        return not self._pending and not self._active and not self._deferred

    def _next_handle(self) -> Optional[QueueHandle]:
        with self._cond:
            while True:
                if self._stopping:
                    return None
                while self._pending:
                    handle = self._pending.popleft()
                    if handle.job_id in self._active:
                        self._deferred.setdefault(handle.job_id, deque()).append(handle)
                        continue
                    self._active.add(handle.job_id)
                    handle.state = QueueState.ACTIVE
                    return handle
                self._cond.wait()

    def _release(self, job_id: str):
        with self._cond:
            self._active.discard(job_id)
            held = self._deferred.pop(job_id, None)
            if held:
                self._pending.extendleft(reversed(held))
            self._cond.notify_all()

    def _worker_loop(self):
        while True:
            handle = self._next_handle()
            if handle is None:
                return
            try:
                result = self._handler(handle.item)
            except Exception as e:
                logger.warning("Job %s failed in queue %s: %s", handle.job_id, self.name, e)
                handle._finish(QueueState.FAILED, error=e)
            else:
                handle._finish(QueueState.COMPLETED, result=result)
            finally:
                self._release(handle.job_id)
