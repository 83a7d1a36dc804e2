"""Desired and observed topic models shared by the store, accessor and engine."""
from __future__ import annotations

from typing import Dict, NamedTuple, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReconcileKey(NamedTuple):
    """Identity of one KafkaTopic object: its namespace and metadata name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: dict) -> "ReconcileKey":
        meta = obj.get("metadata") or {}
        return cls(meta.get("namespace") or "default", meta["name"])


class TopicSpec(BaseModel):
    """Desired state of a Kafka topic as declared in a KafkaTopic ``spec``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=249,
        pattern=r"^[A-Za-z0-9._\-]+$",
        examples=["greetings"],
        description="Kafka topic name",
    )
    partitions: int = Field(..., ge=1)
    replication_factor: int = Field(..., ge=1, alias="replicationFactor")
    config: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    def reject_dot_names(cls, v: str) -> str:
        if v in (".", ".."):
            raise ValueError("topic name cannot be '.' or '..'")
        return v

    @field_validator("config", mode="before")
    def stringify_values(cls, v):
        """Coerce scalar YAML values (ints, bools) to the strings Kafka expects."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("config must be a mapping of string keys to string values")
        out = {}
        for key, val in v.items():
            if not isinstance(key, str) or not key.strip():
                raise ValueError(f"invalid config key {key!r}")
            if isinstance(val, (dict, list, tuple)) or val is None:
                raise ValueError(f"config value for '{key}' must be a scalar")
            if isinstance(val, bool):
                val = "true" if val else "false"
            out[key] = str(val)
        return out

    @classmethod
    def from_object(cls, obj: dict) -> "TopicSpec":
        """Build a spec from a raw KafkaTopic object (dict as served by the API)."""
        spec = dict(obj.get("spec") or {})
        if not spec.get("name"):
            spec["name"] = (obj.get("metadata") or {}).get("name")
        return cls.model_validate(spec)


class TopicObservation(BaseModel):
    """Actual state of a topic as read from Kafka during one pass.

    ``config`` holds only topic-level overrides, never broker defaults.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    exists: bool
    partitions: int = 0
    replication_factor: int = 0
    config: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def absent(cls, name: str) -> "TopicObservation":
        return cls(name=name, exists=False)


class ConfigDiff(BaseModel):
    """Key-wise difference between desired config and observed overrides."""

    added: Dict[str, str] = Field(default_factory=dict)
    changed: Dict[str, str] = Field(default_factory=dict)
    removed: Tuple[str, ...] = ()

    @property
    def changes(self) -> Dict[str, str]:
        """Keys to write; ``removed`` keys are never included."""
        return {**self.added, **self.changed}

    def __bool__(self) -> bool:
        return bool(self.added or self.changed)


def diff_config(desired: Dict[str, str], observed: Dict[str, str]) -> ConfigDiff:
    added = {k: v for k, v in desired.items() if k not in observed}
    changed = {k: v for k, v in desired.items() if k in observed and observed[k] != v}
    removed = tuple(sorted(k for k in observed if k not in desired))
    return ConfigDiff(added=added, changed=changed, removed=removed)
