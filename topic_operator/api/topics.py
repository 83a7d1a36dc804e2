# topic_operator/api/topics.py
"""Read-only view of tracked KafkaTopic objects plus a manual reconcile trigger."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from topic_operator.domain.models.topic import ReconcileKey
from topic_operator.models.topics import (
    ReconcileAccepted,
    TopicConditionView,
    TopicSpecView,
    TopicStateView,
)
from topic_operator.services.controller import TopicController

router = APIRouter(prefix="/topics", tags=["topics"])


def _controller(request: Request) -> TopicController:
    return request.app.state.controller


def _view(ctrl: TopicController, key: ReconcileKey) -> TopicStateView:
    entry = ctrl.store.entry(key)
    if entry is None:
        raise KeyError(f"KafkaTopic {key} is not tracked")
    spec = None
    if entry.spec is not None:
        spec = TopicSpecView(
            name=entry.spec.name,
            partitions=entry.spec.partitions,
            replicationFactor=entry.spec.replication_factor,
            config=dict(entry.spec.config),
        )
    cond = ctrl.reporter.condition(key)
    return TopicStateView(
        namespace=key.namespace,
        resource=key.name,
        generation=entry.generation,
        deletionPending=entry.deletion_pending,
        spec=spec,
        specError=entry.spec_error,
        condition=TopicConditionView(
            phase=cond.phase.value,
            lastError=cond.lastError,
            observedGeneration=cond.observedGeneration,
        ) if cond else None,
    )


@router.get("", response_model=list[TopicStateView])
def list_topics(
    request: Request,
    namespace: Optional[str] = Query(None, description="Only objects in this namespace"),
    phase: Optional[str] = Query(None, description="Only objects whose last phase matches"),
):
    """
    Returns every tracked KafkaTopic with its desired spec and the condition
    written after its latest reconcile pass, sorted by namespace/name.
    """
    ctrl = _controller(request)
    keys = sorted(ctrl.store.list_keys())
    if namespace:
        keys = [k for k in keys if k.namespace == namespace]
    items = []
    for key in keys:
        try:
            view = _view(ctrl, key)
        except KeyError:
            # removed by a finished deletion while listing
            continue
        if phase and (view.condition is None or view.condition.phase.lower() != phase.lower()):
            continue
        items.append(view)
    return items


@router.get("/{namespace}/{name}", response_model=TopicStateView)
def topic_state(namespace: str, name: str, request: Request):
    return _view(_controller(request), ReconcileKey(namespace, name))


@router.post(
    "/{namespace}/{name}/reconcile",
    response_model=ReconcileAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def trigger_reconcile(namespace: str, name: str, request: Request):
    """Queue a pass for one object without waiting for the next drift scan."""
    ctrl = _controller(request)
    key = ReconcileKey(namespace, name)
    if ctrl.store.entry(key) is None:
        raise KeyError(f"KafkaTopic {key} is not tracked")
    ctrl.enqueue(key)
    return ReconcileAccepted(key=str(key))
