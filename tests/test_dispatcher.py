"""Unit tests for the Dispatcher worker pool."""

import logging
import threading
import time
from collections import defaultdict
from typing import Dict, List, Tuple

import pytest

from fakes import InMemoryBackend
from kube_external_dns.dispatcher import DeleteTask, Dispatcher, UpsertTask
from kube_external_dns.errors import NotFoundError, ReconcileCancelled
from kube_external_dns.providers.base import Registry
from kube_external_dns.reconciler import ReconcileResult, Reconciler
from kube_external_dns.records import Record


class SlowReconciler:
    """Stand-in engine that tracks how many calls run at once per name."""

    def __init__(self, delay: float = 0.02):
        self.delay = delay
        self.lock = threading.Lock()
        self.active: Dict[str, int] = defaultdict(int)
        self.max_active: Dict[str, int] = defaultdict(int)
        self.order: List[Tuple[str, Tuple[str, ...]]] = []

    def reconcile_upsert(self, provider, root_domain, fqdn, targets, record_type="A", ttl=0, *, subject=None, cancel=None):
        with self.lock:
            self.active[fqdn] += 1
            self.max_active[fqdn] = max(self.max_active[fqdn], self.active[fqdn])
        time.sleep(self.delay)
        with self.lock:
            self.active[fqdn] -= 1
            self.order.append((fqdn, tuple(targets)))
        return ReconcileResult(True, Record(fqdn, record_type, tuple(targets), ttl))


def test_tasks_run_and_report_results(registry: Registry, backend: InMemoryBackend) -> None:
    results = []
    lock = threading.Lock()

    def on_result(task, result, error) -> None:
        with lock:
            results.append((task.fqdn, result.changed if result else None, error))

    dispatcher = Dispatcher(Reconciler(registry), workers=2, on_result=on_result)
    dispatcher.submit(UpsertTask("memory", "example.com", "a.example.com", ("1.1.1.1",)))
    dispatcher.submit(UpsertTask("memory", "example.com", "b.example.com", ("2.2.2.2",)))
    dispatcher.join()
    dispatcher.stop()

    assert sorted(results) == [("a.example.com", True, None), ("b.example.com", True, None)]
    assert sorted(r["fqdn"] for r in backend.records) == ["a.example.com.", "b.example.com."]


def test_failed_task_is_logged_and_reported(
    registry: Registry, backend: InMemoryBackend, caplog: pytest.LogCaptureFixture
) -> None:
    errors = []
    dispatcher = Dispatcher(
        Reconciler(registry), workers=1, on_result=lambda task, result, error: errors.append(error)
    )

    with caplog.at_level(logging.ERROR):
        dispatcher.submit(DeleteTask("memory", "example.com", "gone.example.com"))
        dispatcher.submit(UpsertTask("memory", "example.com", "a.example.com", ("1.1.1.1",)))
        dispatcher.join()
    dispatcher.stop()

    assert isinstance(errors[0], NotFoundError)
    assert errors[1] is None
    assert "expected record 'gone.example.com.' but it was not found" in caplog.text


def test_callback_failure_does_not_kill_worker(registry: Registry, backend: InMemoryBackend) -> None:
    seen = []

    def on_result(task, result, error) -> None:
        seen.append(task.fqdn)
        raise RuntimeError("callback broke")

    dispatcher = Dispatcher(Reconciler(registry), workers=1, on_result=on_result)
    dispatcher.submit(UpsertTask("memory", "example.com", "a.example.com", ("1.1.1.1",)))
    dispatcher.submit(UpsertTask("memory", "example.com", "b.example.com", ("1.1.1.1",)))
    dispatcher.join()
    dispatcher.stop()

    assert seen == ["a.example.com", "b.example.com"]


def test_same_name_is_serialized() -> None:
    reconciler = SlowReconciler()
    dispatcher = Dispatcher(reconciler, workers=4)  # type: ignore[arg-type]

    for i in range(4):
        dispatcher.submit(UpsertTask("memory", "example.com", "svc.example.com", (f"10.0.0.{i}",)))
        dispatcher.submit(UpsertTask("memory", "example.com", f"other{i}.example.com", ("1.1.1.1",)))
    dispatcher.join()
    dispatcher.stop()

    assert reconciler.max_active["svc.example.com"] == 1
    assert len(reconciler.order) == 8


def test_key_ignores_trailing_dot() -> None:
    assert UpsertTask("memory", "example.com", "svc.example.com", ()).key == DeleteTask(
        "memory", "example.com", "svc.example.com."
    ).key


def test_submit_blocks_when_queue_is_full(registry: Registry) -> None:
    started = threading.Event()
    release = threading.Event()

    class BlockingReconciler:
        def reconcile_upsert(self, *args, **kwargs):
            started.set()
            release.wait(5)
            return ReconcileResult(False, Record("svc.example.com"))

    dispatcher = Dispatcher(BlockingReconciler(), workers=1, maxsize=1)  # type: ignore[arg-type]
    dispatcher.submit(UpsertTask("memory", "example.com", "a.example.com", ("1.1.1.1",)))
    assert started.wait(5)
    dispatcher.submit(UpsertTask("memory", "example.com", "b.example.com", ("1.1.1.1",)))

    producer = threading.Thread(
        target=dispatcher.submit, args=(UpsertTask("memory", "example.com", "c.example.com", ("1.1.1.1",)),)
    )
    producer.start()
    producer.join(0.2)
    assert producer.is_alive()

    release.set()
    producer.join(5)
    assert not producer.is_alive()
    dispatcher.join()
    dispatcher.stop()


def test_stopped_dispatcher_rejects_and_cancels(registry: Registry, backend: InMemoryBackend) -> None:
    dispatcher = Dispatcher(Reconciler(registry), workers=1)
    dispatcher.stop(cancel_pending=True)
    task = UpsertTask("memory", "example.com", "a.example.com", ("1.1.1.1",))

    with pytest.raises(RuntimeError):
        dispatcher.submit(task)
    with pytest.raises(ReconcileCancelled):
        dispatcher.run(task)
    assert backend.calls == []
