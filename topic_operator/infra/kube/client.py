"""Kubernetes access for KafkaTopic objects: list/watch, finalizers, status."""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Sequence, Tuple

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from topic_operator.core.config import Settings, get_settings
from topic_operator.domain.models.topic import ReconcileKey

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """In-cluster service account first, local kubeconfig as fallback."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying local kubeconfig")
        config.load_kube_config()


class KubeTopicClient:
    """Thin wrapper over ``CustomObjectsApi`` scoped to the KafkaTopic CRD."""

    def __init__(self, settings: Optional[Settings] = None, api: Optional[client.CustomObjectsApi] = None) -> None:
        self._settings = settings or get_settings()
        if api is None:
            load_kube_config()
            api = client.CustomObjectsApi()
        self._api = api

    @property
    def _crd(self) -> dict:
        s = self._settings
        return {"group": s.crd_group, "version": s.crd_version, "plural": s.crd_plural}

    def _list_call(self):
        if self._settings.watch_namespace:
            return self._api.list_namespaced_custom_object, {"namespace": self._settings.watch_namespace}
        return self._api.list_cluster_custom_object, {}

    # ---------- desired state feed ----------
    def list_objects(self) -> Tuple[List[dict], str]:
        """Return every KafkaTopic object and the list's resourceVersion."""
        fn, scope = self._list_call()
        result = fn(**self._crd, **scope, _request_timeout=self._settings.kube_request_timeout_sec)
        items = result.get("items") or []
        rv = (result.get("metadata") or {}).get("resourceVersion") or ""
        return items, rv

    def watch_objects(self, resource_version: str) -> Iterator[dict]:
        """Yield raw watch events (``{"type": ..., "object": {...}}``) from ``resource_version``."""
        fn, scope = self._list_call()
        w = watch.Watch()
        try:
            yield from w.stream(
                fn,
                **self._crd,
                **scope,
                resource_version=resource_version,
                timeout_seconds=self._settings.watch_timeout_sec,
                allow_watch_bookmarks=True,
            )
        finally:
            w.stop()

    # ---------- finalizers ----------
    def _patch(self, key: ReconcileKey, body: dict) -> dict:
        return self._api.patch_namespaced_custom_object(
            **self._crd,
            namespace=key.namespace,
            name=key.name,
            body=body,
            _request_timeout=self._settings.kube_request_timeout_sec,
        )

    @staticmethod
    def _finalizers_body(finalizers: Optional[List[str]], resource_version: Optional[str]) -> dict:
        # A merge patch replaces the whole list; resourceVersion turns it into a
        # compare-and-swap so a finalizer added since ``current`` was cached is
        # never dropped (the API server answers 409 Conflict instead).
        meta: dict = {"finalizers": finalizers}
        if resource_version:
            meta["resourceVersion"] = resource_version
        return {"metadata": meta}

    def add_finalizer(
        self, key: ReconcileKey, current: Sequence[str], resource_version: Optional[str] = None
    ) -> Tuple[List[str], Optional[str]]:
        """Append the operator finalizer to ``current``.

        Returns the finalizers and resourceVersion of the patched object.
        """
        finalizer = self._settings.finalizer
        if finalizer in current:
            return list(current), resource_version
        updated = [*current, finalizer]
        patched = self._patch(key, self._finalizers_body(updated, resource_version)) or {}
        meta = patched.get("metadata") or {}
        logger.debug("Added finalizer to %s", key)
        return list(meta.get("finalizers") or updated), meta.get("resourceVersion")

    def remove_finalizer(
        self, key: ReconcileKey, current: Sequence[str], resource_version: Optional[str] = None
    ) -> None:
        """Drop the operator finalizer, keeping any other controller's finalizers.

        A 404 means the object is already gone, which is what removal is for.
        A 409 means ``current`` is stale and is raised for the caller to retry.
        """
        remaining = [f for f in current if f != self._settings.finalizer]
        try:
            self._patch(key, self._finalizers_body(remaining or None, resource_version))
        except ApiException as exc:
            if exc.status == 404:
                logger.debug("Object %s already gone; finalizer release skipped", key)
                return
            raise
        logger.debug("Removed finalizer from %s", key)

    # ---------- status ----------
    def patch_status(self, key: ReconcileKey, status: dict) -> dict:
        return self._api.patch_namespaced_custom_object_status(
            **self._crd,
            namespace=key.namespace,
            name=key.name,
            body={"status": status},
            _request_timeout=self._settings.kube_request_timeout_sec,
        )
