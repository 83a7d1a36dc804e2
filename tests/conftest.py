"""
pytest configuration for the topic operator tests.

Every test runs against the in-memory fakes in ``fakes.py``; nothing talks
to a real Kafka cluster or Kubernetes API server.
"""

import pytest

from fakes import FINALIZER, FakeKafka, FakeKube
from topic_operator.core.config import Settings
from topic_operator.domain.services.reconciler import Reconciler
from topic_operator.services.controller import TopicController
from topic_operator.services.status_reporter import StatusReporter
from topic_operator.services.store import DesiredStateStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        finalizer=FINALIZER,
        worker_count=2,
        drift_interval_sec=60.0,
        backoff_base_sec=0.5,
        backoff_cap_sec=8.0,
        terminal_requeue_sec=600.0,
        watch_retry_sec=0.01,
    )


@pytest.fixture
def kafka() -> FakeKafka:
    return FakeKafka()


@pytest.fixture
def kube() -> FakeKube:
    return FakeKube()


@pytest.fixture
def triggered():
    """Keys the store asked to enqueue, in order."""
    return []


@pytest.fixture
def store(triggered) -> DesiredStateStore:
    return DesiredStateStore(on_change=triggered.append)


@pytest.fixture
def reporter(kube) -> StatusReporter:
    return StatusReporter(kube)


@pytest.fixture
def reconciler(store, kafka, kube, reporter, settings) -> Reconciler:
    return Reconciler(store, kafka, kube, reporter, settings)


@pytest.fixture
def controller(kafka, kube, settings) -> TopicController:
    ctrl = TopicController(accessor=kafka, kube=kube, settings=settings)
    yield ctrl
    ctrl.stop(timeout=2.0)
