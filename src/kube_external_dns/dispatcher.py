"""Bounded work queue that feeds reconciliation calls to worker threads.

Change notifications are queued instead of being reconciled inline, so a slow
backend never blocks whoever produces them. Tasks for the same
(provider, fqdn) run one at a time; different names run concurrently.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from kube_external_dns.errors import ExternalDNSError
from kube_external_dns.reconciler import ReconcileResult, Reconciler
from kube_external_dns.records import DEFAULT_RECORD_TYPE, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertTask:
    provider: str
    root_domain: str
    fqdn: str
    targets: Tuple[str, ...]
    record_type: str = DEFAULT_RECORD_TYPE
    ttl: int = 0
    subject: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider, normalize(self.fqdn))


@dataclass(frozen=True)
class DeleteTask:
    provider: str
    root_domain: str
    fqdn: str
    record_type: str = DEFAULT_RECORD_TYPE
    subject: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider, normalize(self.fqdn))


Task = Union[UpsertTask, DeleteTask]
ResultCallback = Callable[[Task, Optional[ReconcileResult], Optional[Exception]], None]

_STOP = object()


@dataclass
class _KeyLocks:
    """Per-key locks, created on demand."""

    locks: Dict[Tuple[str, str], threading.Lock] = field(default_factory=dict)
    guard: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: Tuple[str, str]) -> threading.Lock:
        with self.guard:
            lock = self.locks.get(key)
            if lock is None:
                lock = self.locks[key] = threading.Lock()
            return lock


class Dispatcher:
    """Runs queued reconciliation tasks on a fixed pool of threads.

    Args:
        reconciler: Engine used to run each task.
        workers: Number of worker threads.
        maxsize: Queue capacity; :meth:`submit` blocks once it is full.
        on_result: Called with (task, result, error) after each task.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        workers: int = 4,
        maxsize: int = 100,
        on_result: Optional[ResultCallback] = None,
    ):
        self.reconciler = reconciler
        self.on_result = on_result
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._locks = _KeyLocks()
        self._cancel = threading.Event()
        self._threads: List[threading.Thread] = []
        for i in range(max(1, workers)):
            thread = threading.Thread(target=self._worker, name=f"reconcile-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def submit(self, task: Task) -> None:
        """Queue a task, blocking while the queue is full."""
        if self._cancel.is_set():
            raise RuntimeError("dispatcher is stopped")
        self._queue.put(task)

    def join(self) -> None:
        """Wait until every queued task has been processed."""
        self._queue.join()

    def stop(self, *, cancel_pending: bool = False) -> None:
        """Stop the workers after the queued tasks.

        With ``cancel_pending`` queued tasks that have not started yet fail
        with ReconcileCancelled; a task already writing runs to completion.
        """
        if cancel_pending:
            self._cancel.set()
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join()
        self._cancel.set()

    def run(self, task: Task) -> ReconcileResult:
        """Run a single task on the calling thread, serialized on its key."""
        with self._locks.get(task.key):
            if isinstance(task, UpsertTask):
                return self.reconciler.reconcile_upsert(
                    task.provider,
                    task.root_domain,
                    task.fqdn,
                    task.targets,
                    task.record_type,
                    task.ttl,
                    subject=task.subject or None,
                    cancel=self._cancel,
                )
            return self.reconciler.reconcile_delete(
                task.provider,
                task.root_domain,
                task.fqdn,
                task.record_type,
                subject=task.subject or None,
                cancel=self._cancel,
            )

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._process(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    def _process(self, task: Task) -> None:
        result: Optional[ReconcileResult] = None
        error: Optional[Exception] = None
        try:
            result = self.run(task)
        except ExternalDNSError as e:
            error = e
            logger.error(str(e))
        except Exception as e:
            error = e
            logger.error(f"Unexpected error reconciling {task.fqdn}: {e}", exc_info=True)

        if self.on_result is not None:
            try:
                self.on_result(task, result, error)
            except Exception as e:
                logger.error(f"Result callback failed for {task.fqdn}: {e}", exc_info=True)
