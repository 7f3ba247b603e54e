"""
=============================================================================
CONNECTION THREAD POOL
=============================================================================

Accepted connections are served by a bounded set of worker threads that
pull from a bounded queue:

    accept loop ──► submit(serve, conn) ──► [ queue (queue_size) ] ──► workers
                          │
                          └── queue full → False → caller answers 503

    min_workers  threads are started up front and never retire
    max_workers  ceiling; one more is added whenever queued connections
                 outnumber idle workers
    idle_timeout an extra worker (above min_workers) that finds the queue
                 empty for this long retires

Workers exit when they pull the poison pill (None) off the queue.

Handler calls do NOT run here. A worker owns one connection for its
whole keep-alive life and hands each adapter call to a separate executor
so it can stop waiting after handler_timeout.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class Task:
    """A connection waiting for a worker: ``func(*args)``."""
    func: Callable[..., Any]
    args: tuple = ()
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def waited(self) -> float:
        return time.monotonic() - self.submitted_at


class Worker(threading.Thread):
    """
    Serves queued connections until it gets the poison pill, or until the
    pool lets it retire for being idle.

    A task that raises is logged and counted; the worker keeps going.
    """

    def __init__(self, pool: "ThreadPool", worker_id: int):
        super().__init__(name=f"httpadapter-worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.busy = False
        self.served = 0
        self.failed = 0

    def run(self):
        tasks = self.pool._task_queue
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            try:
                task = tasks.get(timeout=self.pool.idle_timeout)
            except queue.Empty:
                if self.pool._retire(self):
                    break
                continue

            try:
                if task is None:
                    break
                self._serve(task)
            finally:
                tasks.task_done()

        logger.debug(f"Worker {self.worker_id} exiting after {self.served} connections")

    def _serve(self, task: Task):
        self.busy = True
        self.pool._record_wait(task.waited)
        try:
            task.func(*task.args)
            self.served += 1
        except Exception:
            logger.exception(f"Worker {self.worker_id} task failed")
            self.failed += 1
        finally:
            self.busy = False


class ThreadPool:
    """
    Bounded worker pool for connection tasks.

        pool = ThreadPool(min_workers=4, max_workers=16, queue_size=100)
        pool.start()
        if not pool.submit(serve, conn):
            reject(conn)          # saturated
        ...
        pool.shutdown()
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        idle_timeout: float = 1.0,
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size
        self.idle_timeout = idle_timeout

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._running = False
        self._worker_ids = 0

        self.rejected = 0
        self.max_wait = 0.0
        self._retired_served = 0
        self._retired_failed = 0

    def start(self):
        with self._lock:
            if self._running:
                return
            logger.info(f"Starting {self.min_workers} connection workers (max {self.max_workers})")
            for _ in range(self.min_workers):
                self._spawn()
            self._running = True

    def _spawn(self):
        # caller holds self._lock
        self._worker_ids += 1
        worker = Worker(self, self._worker_ids)
        self._workers.append(worker)
        worker.start()

    def _retire(self, worker: Worker) -> bool:
        """Called by an idle worker; True lets it exit."""
        with self._lock:
            if not self._running:
                return True
            if len(self._workers) <= self.min_workers:
                return False
            self._workers.remove(worker)
            self._retired_served += worker.served
            self._retired_failed += worker.failed
            logger.debug(f"Retiring idle worker {worker.worker_id}; {len(self._workers)} left")
            return True

    def _record_wait(self, seconds: float):
        with self._lock:
            if seconds > self.max_wait:
                self.max_wait = seconds

    def submit(self, func: Callable[..., Any], *args: Any) -> bool:
        """
        Queue ``func(*args)`` without blocking.

        Returns:
            False if the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._running:
            raise RuntimeError("Thread pool is not running")

        try:
            self._task_queue.put_nowait(Task(func=func, args=args))
        except queue.Full:
            with self._lock:
                self.rejected += 1
            logger.warning(f"Connection queue full ({self.queue_size}), rejecting")
            return False

        self._grow_if_saturated()
        return True

    def _grow_if_saturated(self):
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            idle = sum(1 for w in self._workers if not w.busy)
            if self._task_queue.qsize() > idle:
                logger.debug(f"{idle} of {len(self._workers)} workers idle, adding one")
                self._spawn()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = 5.0):
        """
        Stop accepting tasks and stop the workers.

        Args:
            wait:    Let queued connections finish first, for up to
                     ``timeout`` seconds.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers = list(self._workers)

        logger.info(f"Stopping {len(workers)} connection workers")

        if wait:
            deadline = time.monotonic() + (timeout or 0)
            while self._task_queue.unfinished_tasks and time.monotonic() < deadline:
                time.sleep(0.05)

        for _ in workers:
            # A full queue still drains: the pills go in as workers free slots.
            try:
                self._task_queue.put(None, timeout=0.1)
            except queue.Full:
                break
        for worker in workers:
            worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()
        logger.info("Connection workers stopped")

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.busy)

    @property
    def pending_tasks(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        with self._lock:
            workers = list(self._workers)
        return {
            "workers": len(workers),
            "busy": sum(1 for w in workers if w.busy),
            "queued": self._task_queue.qsize(),
            "served": self._retired_served + sum(w.served for w in workers),
            "failed": self._retired_failed + sum(w.failed for w in workers),
            "rejected": self.rejected,
            "max_queue_wait_ms": round(self.max_wait * 1000, 2),
        }
