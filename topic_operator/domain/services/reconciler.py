"""Reconciliation engine: converge one Kafka topic to its KafkaTopic spec."""
from __future__ import annotations

import dataclasses
import logging
from enum import Enum
from typing import List, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from topic_operator.core.config import Settings, get_settings
from topic_operator.core.exceptions import (
    KubeApiError,
    PartitionDecreaseRejected,
    TerminalConfigError,
    TopicAlreadyExists,
    TransientError,
)
from topic_operator.domain.models.status import Phase, StatusCondition
from topic_operator.domain.models.topic import ReconcileKey, TopicObservation, diff_config
from topic_operator.infra.kafka.admin import KafkaTopicAccessor
from topic_operator.infra.kube.client import KubeTopicClient
from topic_operator.services.status_reporter import StatusReporter
from topic_operator.services.store import DesiredEntry, DesiredStateStore

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    NOOP = "noop"
    SYNCED = "synced"
    DELETED = "deleted"
    PENDING = "pending"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclasses.dataclass(frozen=True)
class ReconcileResult:
    """What a pass achieved and whether the key must be looked at again.

    ``requeue_after`` of None with ``requeue`` set means "use the key's
    exponential backoff".
    """

    outcome: Outcome
    requeue: bool = False
    requeue_after: Optional[float] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.NOOP, Outcome.SYNCED, Outcome.DELETED)


class Reconciler:
    """
    Stateless between passes: every pass re-reads the desired entry from the
    store and observes Kafka afresh, so a repeated or late trigger is always
    safe. Within a pass, mutations run in the fixed order
    partitions -> config; replication-factor changes are reported, never
    applied.
    """

    def __init__(
        self,
        store: DesiredStateStore,
        accessor: KafkaTopicAccessor,
        kube: KubeTopicClient,
        reporter: StatusReporter,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._accessor = accessor
        self._kube = kube
        self._reporter = reporter
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------ #
    # Entry point                                                         #
    # ------------------------------------------------------------------ #
    def reconcile(self, key: ReconcileKey) -> ReconcileResult:
        entry = self._store.entry(key)
        if entry is None:
            logger.debug("No desired state for %s; stale trigger", key)
            return ReconcileResult(Outcome.NOOP)

        if entry.deletion_pending:
            return self._reconcile_deletion(entry)

        if entry.spec_error:
            logger.error("Invalid spec for %s: %s", key, entry.spec_error)
            return self._terminal(entry, entry.spec_error)

        spec = entry.spec
        try:
            self._ensure_finalizer(entry)
            observation = self._accessor.describe(spec.name)
        except TransientError as exc:
            return self._transient(entry, exc)
        except TerminalConfigError as exc:
            return self._terminal(entry, str(exc))

        if not observation.exists:
            return self._create(entry)
        return self._update(entry, observation)

    # ------------------------------------------------------------------ #
    # Branches                                                            #
    # ------------------------------------------------------------------ #
    def _create(self, entry: DesiredEntry) -> ReconcileResult:
        spec = entry.spec
        logger.info("Topic %s for %s is missing; creating", spec.name, entry.key)
        try:
            self._accessor.create(spec)
        except TopicAlreadyExists:
            # someone else created it between describe and create
            logger.info("Topic %s appeared concurrently; re-evaluating as update", spec.name)
            self._report(entry, Phase.PENDING)
            return ReconcileResult(Outcome.PENDING, requeue=True, requeue_after=0)
        except TransientError as exc:
            return self._transient(entry, exc)
        except TerminalConfigError as exc:
            return self._terminal(entry, str(exc))
        return self._synced(entry)

    def _update(self, entry: DesiredEntry, observed: TopicObservation) -> ReconcileResult:
        spec = entry.spec
        problems: List[str] = []

        if spec.replication_factor != observed.replication_factor:
            problems.append(
                f"replicationFactor of topic '{spec.name}' is {observed.replication_factor}; "
                f"changing it to {spec.replication_factor} is not supported"
            )

        try:
            if spec.partitions > observed.partitions:
                logger.info(
                    "Growing %s from %d to %d partitions", spec.name, observed.partitions, spec.partitions
                )
                self._accessor.alter_partitions(spec.name, spec.partitions, current=observed.partitions)
            elif spec.partitions < observed.partitions:
                problems.append(str(PartitionDecreaseRejected(spec.name, observed.partitions, spec.partitions)))
        except TransientError as exc:
            return self._transient(entry, exc)
        except TerminalConfigError as exc:
            problems.append(str(exc))

        diff = diff_config(spec.config, observed.config)
        if diff.removed:
            logger.debug("Leaving undeclared config of %s untouched: %s", spec.name, list(diff.removed))
        if diff:
            try:
                self._accessor.alter_config(spec.name, diff.changes)
            except TransientError as exc:
                return self._transient(entry, exc)
            except TerminalConfigError as exc:
                problems.append(str(exc))

        if problems:
            message = "; ".join(problems)
            logger.error("Cannot converge %s: %s", entry.key, message)
            return self._terminal(entry, message)
        return self._synced(entry)

    def _reconcile_deletion(self, entry: DesiredEntry) -> ReconcileResult:
        key, spec = entry.key, entry.spec
        if spec is not None:
            try:
                observation = self._accessor.describe(spec.name)
                if observation.exists:
                    logger.info("Deleting topic %s for %s", spec.name, key)
                    self._accessor.delete(spec.name)
            except TransientError as exc:
                return self._transient(entry, exc)
            except TerminalConfigError as exc:
                logger.error("Deleting topic %s failed: %s", spec.name, exc)
                self._report(entry, Phase.ERROR, str(exc))
                return ReconcileResult(
                    Outcome.TERMINAL,
                    requeue=True,
                    requeue_after=self._settings.terminal_requeue_sec,
                    message=str(exc),
                )

        # The topic is confirmed gone; only now may Kubernetes drop the object.
        if self._settings.finalizer in entry.finalizers:
            try:
                self._kube.remove_finalizer(key, entry.finalizers, resource_version=entry.resource_version)
            except (ApiException, HTTPError) as exc:
                # 409: the cached object is stale; the watch delivers a fresh one
                return self._transient(entry, KubeApiError(f"removing finalizer: {exc}"))
        self._store.remove(key)
        self._reporter.forget(key)
        logger.info("Finished deletion of %s", key)
        return ReconcileResult(Outcome.DELETED)

    # ------------------------------------------------------------------ #
    # Helpers                                                             #
    # ------------------------------------------------------------------ #
    def _ensure_finalizer(self, entry: DesiredEntry) -> None:
        if self._settings.finalizer in entry.finalizers:
            return
        try:
            finalizers, resource_version = self._kube.add_finalizer(
                entry.key, entry.finalizers, resource_version=entry.resource_version
            )
        except (ApiException, HTTPError) as exc:
            raise KubeApiError(f"adding finalizer: {exc}") from exc
        self._store.record_finalizers(entry.key, finalizers, resource_version)

    def _report(self, entry: DesiredEntry, phase: Phase, error: Optional[str] = None) -> None:
        condition = StatusCondition(
            phase=phase,
            topicName=entry.spec.name if entry.spec else None,
            lastError=error,
            observedGeneration=entry.generation,
        )
        self._reporter.report(entry.key, condition)

    def _synced(self, entry: DesiredEntry) -> ReconcileResult:
        logger.debug("Topic %s for %s is in sync", entry.spec.name, entry.key)
        self._report(entry, Phase.SYNCED)
        return ReconcileResult(Outcome.SYNCED)

    def _transient(self, entry: DesiredEntry, exc: Exception) -> ReconcileResult:
        logger.warning("Transient failure reconciling %s: %s", entry.key, exc)
        self._report(entry, Phase.PENDING, str(exc))
        return ReconcileResult(Outcome.TRANSIENT, requeue=True, message=str(exc))

    def _terminal(self, entry: DesiredEntry, message: str) -> ReconcileResult:
        self._report(entry, Phase.ERROR, message)
        return ReconcileResult(Outcome.TERMINAL, message=message)
