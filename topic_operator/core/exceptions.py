"""Error taxonomy for reconciliation plus RFC 7807 *Problem Details* model."""
from __future__ import annotations

from typing import Optional
from uuid import uuid4

from kafka.errors import (
    KafkaConnectionError,
    KafkaError,
    KafkaTimeoutError,
    NoBrokersAvailable,
    NodeNotReadyError,
)
from pydantic import BaseModel, Field

# kafka-python marks most broker-side retriable errors with ``retriable = True``;
# these client-side ones are retriable in practice but not flagged.
_ALWAYS_TRANSIENT = (
    KafkaTimeoutError,
    NoBrokersAvailable,
    NodeNotReadyError,
    KafkaConnectionError,
    TimeoutError,
    ConnectionError,
)


class TopicOperatorError(Exception):
    """Base class for every error raised by the operator."""


class TransientError(TopicOperatorError):
    """Retried with per-key exponential backoff."""


class TransientKafkaError(TransientError):
    """Timeouts, unavailable brokers, leader elections."""


class KubeApiError(TransientError):
    """A Kubernetes API call failed or timed out."""


class TerminalConfigError(TopicOperatorError):
    """The requested state cannot be applied; a corrected spec is required."""


class PartitionDecreaseRejected(TerminalConfigError):
    """Kafka cannot reduce the partition count of an existing topic."""

    def __init__(self, name: str, observed: int, requested: int) -> None:
        super().__init__(
            f"topic '{name}' has {observed} partitions; "
            f"decreasing to {requested} is not supported"
        )
        self.name = name
        self.observed = observed
        self.requested = requested


class TopicAlreadyExists(TopicOperatorError):
    """Create lost a race with a concurrent creator."""


def classify_kafka_error(exc: BaseException) -> TopicOperatorError:
    """Map a kafka-python (or socket-level) error onto the operator taxonomy."""
    if isinstance(exc, TopicOperatorError):
        return exc
    if isinstance(exc, _ALWAYS_TRANSIENT) or getattr(exc, "retriable", False):
        return TransientKafkaError(_describe(exc))
    if isinstance(exc, KafkaError):
        return TerminalConfigError(_describe(exc))
    return TransientKafkaError(_describe(exc))


def _describe(exc: BaseException) -> str:
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text and text != name else name


class ProblemDetail(BaseModel):
    """Data model that serialises to RFC 7807 JSON.

    Attributes
    ----------
    type : str
        A URI reference that identifies the problem type.
    title : str
        A short human-readable summary of the problem type.
    status : int
        The HTTP status code.
    detail : str | None
        A human-readable explanation specific to this occurrence.
    instance : str
        A URI reference that identifies the specific occurrence.
    """

    type: str = Field("about:blank", examples=["/unknown-topic"])
    title: str
    status: int = Field(..., ge=400, le=599)
    detail: Optional[str] = None
    instance: str = Field(default_factory=lambda: f"urn:uuid:{uuid4()}")
