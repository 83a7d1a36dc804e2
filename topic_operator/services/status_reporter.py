from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from topic_operator.domain.models.status import StatusCondition
from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.infra.kube.client import KubeTopicClient

logger = logging.getLogger(__name__)


class StatusReporter:
    """
    Writes reconcile outcomes to the KafkaTopic status subresource.

    Status is for visibility only: write failures are logged and the write is
    attempted again after the next pass, never raised to the reconciler.
    """

    def __init__(self, kube: KubeTopicClient) -> None:
        self._kube = kube
        self._written: Dict[ReconcileKey, StatusCondition] = {}
        self._latest: Dict[ReconcileKey, StatusCondition] = {}
        self._lock = threading.Lock()

    def report(self, key: ReconcileKey, condition: StatusCondition) -> bool:
        """Persist ``condition``; returns False if the write failed."""
        with self._lock:
            self._latest[key] = condition
            if self._written.get(key) == condition:
                return True
        try:
            self._kube.patch_status(key, condition.to_status())
        except ApiException as exc:
            if exc.status == 404:
                logger.debug("Status write for %s skipped: object gone", key)
            else:
                logger.warning("Status write for %s failed (HTTP %s): %s", key, exc.status, exc.reason)
            return False
        except HTTPError as exc:
            logger.warning("Status write for %s failed: %s", key, exc)
            return False
        with self._lock:
            self._written[key] = condition
        return True

    def observe(self, key: ReconcileKey, status: Optional[dict]) -> bool:
        """Compare the status carried by a watched object with the last write.

        Returns True (and forgets the write, so the next ``report`` patches
        again) when someone else cleared or edited the operator's fields.
        """
        with self._lock:
            written = self._written.get(key)
            if written is None:
                return False
            fields = written.to_status()
            ours = _present(fields)
            seen = _present({k: (status or {}).get(k) for k in fields})
            if ours == seen:
                return False
            del self._written[key]
        logger.info("Status of %s was changed outside the operator; rewriting", key)
        return True

    def condition(self, key: ReconcileKey) -> Optional[StatusCondition]:
        with self._lock:
            return self._latest.get(key)

    def conditions(self) -> Dict[ReconcileKey, StatusCondition]:
        with self._lock:
            return dict(self._latest)

    def forget(self, key: ReconcileKey) -> None:
        with self._lock:
            self._written.pop(key, None)
            self._latest.pop(key, None)


def _present(status: dict) -> dict:
    # merge patches delete keys sent as null, so the API never echoes them back
    return {k: v for k, v in status.items() if v is not None}
