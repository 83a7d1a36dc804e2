"""List-then-watch feed that keeps the DesiredStateStore current."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.infra.kube.client import KubeTopicClient
from topic_operator.services.store import DesiredStateStore

logger = logging.getLogger(__name__)


class ResourceVersionExpired(Exception):
    """The watch fell too far behind (HTTP 410 Gone); a fresh list is required."""


class TopicWatcher:
    def __init__(
        self,
        kube: KubeTopicClient,
        store: DesiredStateStore,
        retry_sec: float = 5.0,
        on_status: Optional[Callable[[ReconcileKey, Optional[dict]], None]] = None,
    ) -> None:
        self._kube = kube
        self._store = store
        self._retry_sec = retry_sec
        # receives the status of every listed or modified object
        self._on_status = on_status

    def run(self, stop: threading.Event) -> None:
        """Relist and watch until ``stop`` is set; never raises."""
        while not stop.is_set():
            try:
                rv = self.relist()
                while not stop.is_set():
                    rv = self.watch_once(rv, stop)
            except ResourceVersionExpired:
                logger.info("Watch resourceVersion expired; relisting")
                continue
            except ApiException as exc:
                if exc.status == 410:
                    logger.info("Watch resourceVersion expired; relisting")
                    continue
                logger.warning("KafkaTopic watch failed (HTTP %s): %s", exc.status, exc.reason)
            except HTTPError as exc:
                logger.warning("KafkaTopic watch connection error: %s", exc)
            except Exception:
                logger.exception("Unexpected error in KafkaTopic watch")
            stop.wait(self._retry_sec)

    def relist(self) -> str:
        items, rv = self._kube.list_objects()
        self._store.replace(items)
        for obj in items:
            self._observe_status(obj)
        logger.info("Listed %d KafkaTopic object(s) at resourceVersion %s", len(items), rv)
        return rv

    def watch_once(self, resource_version: str, stop: threading.Event) -> str:
        """Consume one watch window; returns the resourceVersion to resume from."""
        rv = resource_version
        for event in self._kube.watch_objects(rv):
            if stop.is_set():
                break
            rv = self.handle_event(event) or rv
        return rv

    def handle_event(self, event: dict) -> str | None:
        etype = event.get("type")
        obj = event.get("object") or {}
        if etype == "ERROR":
            if obj.get("code") == 410:
                raise ResourceVersionExpired(obj.get("message"))
            raise ApiException(status=obj.get("code"), reason=obj.get("message"))
        meta = obj.get("metadata") or {}
        if etype == "BOOKMARK":
            return meta.get("resourceVersion")
        if etype in ("ADDED", "MODIFIED"):
            self._store.upsert(obj)
            self._observe_status(obj)
        elif etype == "DELETED":
            self._store.mark_deleted(obj)
        else:
            logger.debug("Ignoring watch event of type %s", etype)
        return meta.get("resourceVersion")

    def _observe_status(self, obj: dict) -> None:
        if self._on_status is not None:
            self._on_status(ReconcileKey.from_object(obj), obj.get("status"))
