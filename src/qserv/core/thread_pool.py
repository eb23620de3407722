"""
=============================================================================
WORKER POOL
=============================================================================

Runs one task per accepted connection on a bounded, scaling set of
threads.

    ┌──────────────┐  submit(conn)   ┌───────────────────┐
    │ accept loop  │ ──────────────► │ task queue (100)  │
    └──────────────┘                 └─────────┬─────────┘
                                               │ get()
                      ┌────────────┬───────────┼───────────┐
                      ▼            ▼           ▼           ▼
                 Worker-0     Worker-1     Worker-2 ... Worker-N
                 (min_workers started up front, more added while
                  every worker is busy and tasks are waiting, up to
                  max_workers)

A full queue makes submit() return False; the caller answers 503 rather
than letting connections pile up without bound.

=============================================================================
SHUTDOWN
=============================================================================

    1. refuse new submissions
    2. wait until the queue is drained AND no worker is busy,
       but never past `timeout`
    3. wake every worker with a sentinel and join it

Workers are daemon threads, so a request that outlives the deadline
cannot keep the process alive.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """Pulls tasks off the shared queue until it receives None."""

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int, idle_timeout: float = 1.0):
        super().__init__(name=f"qserv-worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0
        self._stop_event = threading.Event()

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")
        while not self._stop_event.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue
            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.task_queue.task_done()
        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        started = time.monotonic()
        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
        except Exception as e:
            # a failing task never takes the worker down with it
            logger.exception(f"Worker {self.worker_id} task failed after {time.monotonic() - started:.3f}s: {e}")
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE

    def stop(self):
        self._stop_event.set()


class ThreadPool:
    """
    Scaling pool of worker threads.

        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()
        pool.submit(handle_connection, args=(conn,))
        ...
        pool.shutdown(timeout=30.0)

    Args:
        min_workers: Threads started by start().
        max_workers: Upper bound when scaling up.
        max_queue: Pending tasks accepted before submit() refuses.
        idle_timeout: How often idle workers re-check for stop.
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 16, max_queue: int = 100, idle_timeout: float = 1.0):
        self.min_workers = min_workers
        self.max_workers = max(min_workers, max_workers)
        self.max_queue = max_queue
        self.idle_timeout = idle_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=max_queue)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutting_down = False
        self._next_worker_id = 0

    def start(self):
        with self._lock:
            if self._started:
                return
            logger.info(f"Starting thread pool with {self.min_workers} workers (max {self.max_workers})")
            for _ in range(self.min_workers):
                self._spawn_locked()
            self._started = True
            self._shutting_down = False

    def _spawn_locked(self) -> Worker:
        """Start one more worker. The caller holds self._lock."""
        worker = Worker(self._task_queue, self._next_worker_id, self.idle_timeout)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = (), kwargs: Optional[Dict[str, Any]] = None) -> bool:
        """
        Queue a task without blocking.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: The pool is not running.
        """
        if not self._started or self._shutting_down:
            raise RuntimeError("Thread pool is not running")
        try:
            self._task_queue.put_nowait(Task(func, args, kwargs or {}))
        except queue.Full:
            return False
        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker when all are busy and work is waiting."""
        with self._lock:
            if len(self._workers) >= self.max_workers or self._task_queue.qsize() == 0:
                return
            if all(w.state == WorkerState.BUSY for w in self._workers):
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._spawn_locked()

    def shutdown(self, timeout: Optional[float] = 30.0):
        """
        Stop the pool, letting in-flight tasks finish within `timeout`.

        Returns once every worker has exited or the deadline has passed.
        """
        with self._lock:
            if not self._started:
                return
            self._shutting_down = True
            workers = list(self._workers)

        logger.info("Shutting down thread pool...")
        deadline = None if timeout is None else time.monotonic() + timeout

        # unfinished_tasks counts queued tasks plus those still running
        while self._task_queue.unfinished_tasks > 0:
            if deadline is not None and time.monotonic() > deadline:
                logger.warning(f"Shutdown timeout after {timeout}s, abandoning {self.busy_workers} busy workers")
                break
            time.sleep(0.05)

        for worker in workers:
            worker.stop()
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                pass

        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(timeout=remaining)

        with self._lock:
            self._workers.clear()
            self._started = False
        logger.info("Thread pool shutdown complete")

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutting_down

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def pending(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            "workers": {"total": len(self._workers), "busy": self.busy_workers},
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
