from fastapi import APIRouter, Request, Response
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST

from topic_operator.domain.models.status import Phase

router = APIRouter()


@router.get("/metrics")
def metrics(request: Request):
    ctrl = getattr(request.app.state, "controller", None)
    if ctrl is None:
        return Response(content=b"", media_type=CONTENT_TYPE_LATEST)

    reg = CollectorRegistry()
    g_tracked = Gauge("kafkatopic_tracked", "KafkaTopic objects in the desired-state cache", registry=reg)
    g_phase = Gauge("kafkatopic_phase", "Tracked objects per last reported phase", ["phase"], registry=reg)
    g_queue = Gauge("kafkatopic_queue_depth", "Keys ready to reconcile", registry=reg)
    g_delayed = Gauge("kafkatopic_queue_delayed", "Keys waiting for a backoff deadline", registry=reg)
    c_passes = Counter("kafkatopic_reconcile_passes", "Reconcile passes by outcome", ["outcome"], registry=reg)

    g_tracked.set(len(ctrl.store))
    g_queue.set(len(ctrl.queue))
    g_delayed.set(ctrl.queue.waiting())

    counts = {p.value: 0 for p in Phase}
    for cond in ctrl.reporter.conditions().values():
        counts[cond.phase.value] += 1
    for phase, n in counts.items():
        g_phase.labels(phase=phase).set(n)

    for outcome, n in ctrl.outcome_counts().items():
        c_passes.labels(outcome=outcome).inc(n)

    return Response(generate_latest(reg), media_type=CONTENT_TYPE_LATEST)
