"""Kubernetes operator that keeps Kafka topics in sync with KafkaTopic resources."""

__version__ = "0.1.0"
