"""Actual-state accessor: Kafka admin operations built on kafka-python."""
from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Optional

from kafka import KafkaAdminClient
from kafka.admin import ConfigResource, ConfigResourceType, NewPartitions, NewTopic
from kafka.errors import (
    KafkaError,
    TopicAlreadyExistsError,
    UnknownTopicOrPartitionError,
    for_code,
)

from topic_operator.core.config import Settings, get_settings
from topic_operator.core.exceptions import (
    PartitionDecreaseRejected,
    TopicAlreadyExists,
    TransientKafkaError,
    classify_kafka_error,
)
from topic_operator.domain.models.topic import TopicObservation, TopicSpec

logger = logging.getLogger(__name__)

# DescribeConfigs v1+ config_source value for per-topic overrides
_DYNAMIC_TOPIC_CONFIG = 1


class KafkaTopicAccessor:
    """
    Lazy adapter around ``KafkaAdminClient`` exposing the five topic operations
    the reconciler needs. Avoids network work at construction time; every
    kafka-python error leaves this class already classified as transient or
    terminal.

    One admin client is shared by all workers. kafka-python's client is not
    safe for concurrent requests, so calls are serialised with a lock.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._admin: KafkaAdminClient | None = None
        self._lock = threading.RLock()

    # ---------- connection ----------
    def _common_kwargs(self) -> dict:
        s = self._settings
        kw = dict(
            bootstrap_servers=s.kafka_bootstrap,
            client_id=s.kafka_client_id,
            request_timeout_ms=s.kafka_request_timeout_ms,
            security_protocol=s.security_protocol,
        )
        if s.kafka_api_version:
            kw["api_version"] = tuple(int(p) for p in s.kafka_api_version.split("."))
        if s.security_protocol.startswith("SASL"):
            kw.update(
                sasl_mechanism=s.sasl_mechanism,
                sasl_plain_username=s.sasl_plain_username,
                sasl_plain_password=s.sasl_plain_password,
            )
        if s.security_protocol.endswith("SSL"):
            kw.update(ssl_cafile=s.ssl_cafile)
        return kw

    def _ensure_admin(self) -> KafkaAdminClient:
        if self._admin is not None:
            return self._admin

        last_exc: Exception | None = None
        tries = self._settings.admin_connect_max_tries
        for attempt in range(1, tries + 1):
            try:
                self._admin = KafkaAdminClient(**self._common_kwargs())
                logger.info("Connected Kafka admin client to %s", self._settings.kafka_bootstrap)
                return self._admin
            except KafkaError as exc:
                last_exc = exc
                logger.warning("Kafka admin connect attempt %d/%d failed: %s", attempt, tries, exc)
                if attempt < tries:
                    time.sleep(self._settings.admin_connect_backoff_sec * attempt)
        raise TransientKafkaError(f"cannot connect to Kafka at {self._settings.kafka_bootstrap}: {last_exc}")

    def _timeout_ms(self) -> int:
        return self._settings.kafka_request_timeout_ms

    def close(self) -> None:
        with self._lock:
            if self._admin is not None:
                self._admin.close()
                self._admin = None

    # ---------- reads ----------
    def describe(self, name: str) -> TopicObservation:
        """Return the observed state of ``name``; an absent topic is not an error."""
        with self._lock:
            try:
                admin = self._ensure_admin()
                if name not in set(admin.list_topics()):
                    return TopicObservation.absent(name)
                meta = admin.describe_topics([name])[0]
                overrides = self._topic_overrides(admin, name)
            except UnknownTopicOrPartitionError:
                return TopicObservation.absent(name)
            except KafkaError as exc:
                raise classify_kafka_error(exc) from exc
            except OSError as exc:
                raise TransientKafkaError(f"describe '{name}' failed: {exc}") from exc

        code = meta.get("error_code", 0)
        if code:
            err = for_code(code)
            if err is UnknownTopicOrPartitionError:
                return TopicObservation.absent(name)
            raise classify_kafka_error(err(f"describe topic '{name}'"))

        partitions = meta.get("partitions") or []
        rf = len(partitions[0]["replicas"]) if partitions else 0
        return TopicObservation(
            name=name,
            exists=True,
            partitions=len(partitions),
            replication_factor=rf,
            config=overrides,
        )

    def _topic_overrides(self, admin: KafkaAdminClient, name: str) -> Dict[str, str]:
        responses = admin.describe_configs(
            config_resources=[ConfigResource(ConfigResourceType.TOPIC, name)]
        )
        out: Dict[str, str] = {}
        for response in responses:
            for resource in response.resources:
                error_code, error_message = resource[0], resource[1]
                if error_code:
                    raise for_code(error_code)(error_message or f"describe configs '{name}'")
                for entry in resource[4]:
                    key, value = entry[0], entry[1]
                    if value is None:
                        continue
                    # v0 entries: (name, value, read_only, is_default, is_sensitive)
                    # v1+ entries: (name, value, read_only, config_source, is_sensitive, synonyms)
                    if len(entry) == 5:
                        is_override = not entry[3]
                    else:
                        is_override = entry[3] == _DYNAMIC_TOPIC_CONFIG
                    if is_override:
                        out[key] = str(value)
        return out

    # ---------- writes ----------
    def create(self, spec: TopicSpec) -> None:
        """Create ``spec`` with its configs. Raises ``TopicAlreadyExists`` on a lost race."""
        new_topic = NewTopic(
            name=spec.name,
            num_partitions=spec.partitions,
            replication_factor=spec.replication_factor,
            topic_configs=dict(spec.config),
        )
        with self._lock:
            try:
                self._ensure_admin().create_topics([new_topic], timeout_ms=self._timeout_ms())
            except TopicAlreadyExistsError as exc:
                raise TopicAlreadyExists(spec.name) from exc
            except KafkaError as exc:
                raise classify_kafka_error(exc) from exc
            except OSError as exc:
                raise TransientKafkaError(f"create '{spec.name}' failed: {exc}") from exc
        logger.info("Created topic %s (partitions=%d, rf=%d)", spec.name, spec.partitions, spec.replication_factor)

    def alter_config(self, name: str, changes: Dict[str, str]) -> None:
        """Set ``changes`` on the topic; existing overrides not named are preserved.

        AlterConfigs replaces a topic's whole override set, so the current
        overrides are read and merged first.
        """
        if not changes:
            return
        with self._lock:
            try:
                admin = self._ensure_admin()
                merged = {**self._topic_overrides(admin, name), **changes}
                responses = admin.alter_configs(
                    [ConfigResource(ConfigResourceType.TOPIC, name, configs=merged)]
                )
                if not isinstance(responses, (list, tuple)):
                    responses = [responses]
                for response in responses:
                    for resource in response.resources:
                        if resource[0]:
                            raise for_code(resource[0])(resource[1] or f"alter configs '{name}'")
            except KafkaError as exc:
                raise classify_kafka_error(exc) from exc
            except OSError as exc:
                raise TransientKafkaError(f"alter config '{name}' failed: {exc}") from exc
        logger.info("Altered config of topic %s: %s", name, sorted(changes))

    def alter_partitions(self, name: str, new_count: int, current: Optional[int] = None) -> None:
        if current is not None and new_count < current:
            raise PartitionDecreaseRejected(name, current, new_count)
        with self._lock:
            try:
                self._ensure_admin().create_partitions(
                    {name: NewPartitions(total_count=new_count)}, timeout_ms=self._timeout_ms()
                )
            except KafkaError as exc:
                raise classify_kafka_error(exc) from exc
            except OSError as exc:
                raise TransientKafkaError(f"alter partitions '{name}' failed: {exc}") from exc
        logger.info("Increased partitions of topic %s to %d", name, new_count)

    def delete(self, name: str) -> None:
        """Delete ``name``; a topic that is already gone counts as deleted."""
        with self._lock:
            try:
                self._ensure_admin().delete_topics([name], timeout_ms=self._timeout_ms())
            except UnknownTopicOrPartitionError:
                logger.info("Topic %s already absent", name)
                return
            except KafkaError as exc:
                raise classify_kafka_error(exc) from exc
            except OSError as exc:
                raise TransientKafkaError(f"delete '{name}' failed: {exc}") from exc
        logger.info("Deleted topic %s", name)
