"""Bounded background worker pool for fire-and-forget tasks."""
import logging
import queue
import threading

logger = logging.getLogger("aimonitor.workers")

_STOP = object()


class BackgroundWorkerPool:
    """Fixed set of daemon threads draining a bounded task queue.

    submit() never raises into the caller. When the queue is full it waits up
    to enqueue_timeout seconds for room, then drops the task and returns False.
    Task exceptions are logged and counted, not re-raised.
    """

    def __init__(self, max_workers=4, max_queue=1000, enqueue_timeout=0.5, name="aimonitor-worker"):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_queue < 1:
            raise ValueError("max_queue must be >= 1")
        self.max_workers = max_workers
        self.max_queue = max_queue
        self.enqueue_timeout = enqueue_timeout
        self.name = name
        self._queue = queue.Queue(maxsize=max_queue)
        self._threads = []
        self._lock = threading.Lock()
        self._running = False
        self._stats = {"submitted": 0, "completed": 0, "failed": 0, "dropped": 0}

    def start(self):
        with self._lock:
            if self._running:
                return self
            self._running = True
            for i in range(self.max_workers):
                t = threading.Thread(target=self._run, name=f"{self.name}-{i}", daemon=True)
                t.start()
                self._threads.append(t)
        logger.info(f"Worker pool started ({self.max_workers} workers, queue {self.max_queue})")
        return self

    @property
    def depth(self):
        """Number of tasks waiting in the queue."""
        return self._queue.qsize()

    def stats(self):
        with self._lock:
            result = dict(self._stats)
        result["depth"] = self.depth
        result["workers"] = len(self._threads)
        return result

    def submit(self, fn, *args, name=None, **kwargs):
        """Queue fn(*args, **kwargs). Returns False if the task was dropped."""
        if not self._running:
            self.start()
        task_name = name or getattr(fn, "__name__", "task")
        try:
            self._queue.put((task_name, fn, args, kwargs), timeout=self.enqueue_timeout)
        except queue.Full:
            with self._lock:
                self._stats["dropped"] += 1
            logger.warning(f"Worker queue full ({self.max_queue}), dropping task {task_name}")
            return False
        with self._lock:
            self._stats["submitted"] += 1
        return True

    def wait_idle(self):
        """Block until every queued task has finished."""
        self._queue.join()

    def shutdown(self, wait=True):
        with self._lock:
            if not self._running:
                return
            self._running = False
            threads = list(self._threads)
            self._threads = []
        for _ in threads:
            self._queue.put((None, _STOP, (), {}))
        if wait:
            for t in threads:
                t.join(timeout=5)
        logger.info("Worker pool stopped")

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.shutdown()

    def _run(self):
        while True:
            task_name, fn, args, kwargs = self._queue.get()
            try:
                if fn is _STOP:
                    return
                fn(*args, **kwargs)
                with self._lock:
                    self._stats["completed"] += 1
            except Exception:
                with self._lock:
                    self._stats["failed"] += 1
                logger.exception(f"Background task {task_name} failed")
            finally:
                self._queue.task_done()
