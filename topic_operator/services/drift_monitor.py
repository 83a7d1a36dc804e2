# topic_operator/services/drift_monitor.py
from __future__ import annotations

import logging
import threading

from topic_operator.services.store import DesiredStateStore
from topic_operator.services.workqueue import WorkQueue

logger = logging.getLogger(__name__)


class DriftMonitor:
    """
    Re-feeds every tracked key into the work queue on a fixed interval.

    Kafka offers no push notification for topics deleted or altered behind
    the operator's back, so convergence after out-of-band changes depends on
    this periodic re-scan rather than on watch events.
    """

    def __init__(self, store: DesiredStateStore, queue: WorkQueue, interval_sec: float) -> None:
        self._store = store
        self._queue = queue
        self._interval = interval_sec

    def tick(self) -> int:
        keys = self._store.list_keys()
        for key in keys:
            self._queue.add(key)
        logger.debug("Drift scan queued %d key(s)", len(keys))
        return len(keys)

    def run(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Drift scan failed")
