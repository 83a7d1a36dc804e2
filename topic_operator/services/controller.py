"""Process-level wiring: store, queue, worker pool, watch feed and drift monitor."""
from __future__ import annotations

import collections
import logging
import threading
from typing import Dict, List, Optional

from topic_operator.core.config import Settings, get_settings
from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.domain.services.reconciler import ReconcileResult, Reconciler
from topic_operator.infra.kafka.admin import KafkaTopicAccessor
from topic_operator.infra.kube.client import KubeTopicClient
from topic_operator.services.drift_monitor import DriftMonitor
from topic_operator.services.status_reporter import StatusReporter
from topic_operator.services.store import DesiredStateStore
from topic_operator.services.watcher import TopicWatcher
from topic_operator.services.workqueue import ExponentialBackoff, WorkQueue

logger = logging.getLogger(__name__)


class TopicController:
    """
    Owns every moving part of the operator. Its lifecycle is bound to the
    process: ``start`` spawns the watch thread, the drift thread and
    ``worker_count`` reconcile workers; ``stop`` shuts them all down.
    """

    def __init__(
        self,
        accessor: KafkaTopicAccessor,
        kube: KubeTopicClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.accessor = accessor
        self.kube = kube
        self.queue = WorkQueue()
        self.backoff = ExponentialBackoff(self.settings.backoff_base_sec, self.settings.backoff_cap_sec)
        self.store = DesiredStateStore(on_change=self.queue.add)
        self.reporter = StatusReporter(kube)
        self.reconciler = Reconciler(self.store, accessor, kube, self.reporter, self.settings)
        self.watcher = TopicWatcher(
            kube, self.store, retry_sec=self.settings.watch_retry_sec, on_status=self._status_observed
        )
        self.drift = DriftMonitor(self.store, self.queue, self.settings.drift_interval_sec)
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._outcomes: collections.Counter = collections.Counter()
        self._outcomes_lock = threading.Lock()

    # ---------- lifecycle ----------
    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        self._spawn("kafkatopic-watch", self.watcher.run, self._stop)
        self._spawn("kafkatopic-drift", self.drift.run, self._stop)
        for i in range(self.settings.worker_count):
            self._spawn(f"kafkatopic-worker-{i}", self._worker)
        logger.info(
            "Topic controller started (workers=%d, drift every %.0fs)",
            self.settings.worker_count, self.settings.drift_interval_sec,
        )

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout)
        self._threads.clear()
        self.accessor.close()
        logger.info("Topic controller stopped")

    @property
    def ready(self) -> bool:
        return self.store.synced

    def enqueue(self, key: ReconcileKey) -> None:
        self.queue.add(key)

    def _status_observed(self, key: ReconcileKey, status: Optional[dict]) -> None:
        if self.reporter.observe(key, status):
            self.queue.add(key)

    def outcome_counts(self) -> Dict[str, int]:
        with self._outcomes_lock:
            return dict(self._outcomes)

    def _count(self, outcome: str) -> None:
        with self._outcomes_lock:
            self._outcomes[outcome] += 1

    # ---------- workers ----------
    def _spawn(self, name: str, target, *args) -> None:
        t = threading.Thread(target=target, args=args, name=name, daemon=True)
        t.start()
        self._threads.append(t)

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: ReconcileKey) -> Optional[ReconcileResult]:
        """Run one pass for ``key`` and schedule any retry it asks for."""
        try:
            result = self.reconciler.reconcile(key)
        except Exception:
            logger.exception("Unexpected error reconciling %s", key)
            self._count("exception")
            self.queue.add_after(key, self.backoff.when(key))
            return None

        self._count(result.outcome.value)
        if result.succeeded:
            self.backoff.forget(key)
        if result.requeue:
            delay = result.requeue_after
            if delay is None:
                delay = self.backoff.when(key)
            logger.debug("Requeueing %s in %.1fs (%s)", key, delay, result.outcome.value)
            self.queue.add_after(key, delay)
        return result
