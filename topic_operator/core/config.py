# topic_operator/core/config.py
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Operator settings loaded from environment variables (and .env).

    Notes
    -----
    - Every variable is prefixed with ``TOPIC_OPERATOR_``, e.g.
      ``TOPIC_OPERATOR_KAFKA_BOOTSTRAP=broker-0:9092,broker-1:9092``.
    - ``watch_namespace`` unset (or empty) means the operator watches
      KafkaTopic objects cluster-wide.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TOPIC_OPERATOR_",
        extra="ignore",
    )

    # ---------- Kafka admin ----------
    kafka_bootstrap: str = Field("localhost:9092")
    kafka_client_id: str = "kafka-topic-operator"
    kafka_api_version: str | None = None

    # Applies to every admin request; exceeding it is a transient failure
    kafka_request_timeout_ms: int = Field(default=15_000, ge=1)

    # Admin connection retry
    admin_connect_max_tries: int = Field(default=3, ge=1)
    admin_connect_backoff_sec: float = 1.0

    # ---------- Security (set when using SASL/SSL) ----------
    security_protocol: str = "PLAINTEXT"   # e.g. "SASL_SSL", "SSL"
    sasl_mechanism: str | None = None
    sasl_plain_username: str | None = None
    sasl_plain_password: str | None = None
    ssl_cafile: str | None = None

    # ---------- Custom resource ----------
    crd_group: str = "kafka.topic-operator.io"
    crd_version: str = "v1"
    crd_plural: str = "kafkatopics"
    finalizer: str = "kafka.topic-operator.io/finalizer"

    watch_namespace: str | None = Field(
        default=None,
        description="Namespace to watch; None watches all namespaces."
    )
    watch_timeout_sec: int = Field(default=300, ge=1)
    watch_retry_sec: float = Field(default=5.0, ge=0)
    kube_request_timeout_sec: float = Field(default=10.0, gt=0)

    # ---------- Reconciliation ----------
    worker_count: int = Field(default=4, ge=1, le=64)
    drift_interval_sec: float = Field(
        default=60.0, gt=0,
        description="Seconds between full re-scans of every tracked topic."
    )
    backoff_base_sec: float = Field(default=1.0, gt=0)
    backoff_cap_sec: float = Field(default=300.0, gt=0)
    terminal_requeue_sec: float = Field(
        default=600.0, gt=0,
        description="Requeue delay after a terminal error while deleting."
    )

    # ---------- Process ----------
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics."
    )

    @field_validator("watch_namespace", mode="before")
    def _blank_namespace_is_cluster_wide(cls, v):
        """Treat an empty or whitespace-only namespace as cluster-wide."""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("kafka_bootstrap", mode="before")
    def _normalise_bootstrap(cls, v):
        """Accept a JSON-ish list or a comma-separated string."""
        if isinstance(v, (list, tuple)):
            return ",".join(str(s).strip() for s in v if str(s).strip())
        return ",".join(s.strip() for s in str(v).split(",") if s.strip())


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
