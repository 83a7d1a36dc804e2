# topic_operator/services/store.py
import dataclasses
import logging
import threading
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from pydantic import ValidationError

from topic_operator.domain.models.topic import ReconcileKey, TopicSpec

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DesiredEntry:
    """Latest known desired state for one KafkaTopic object."""

    key: ReconcileKey
    spec: Optional[TopicSpec]
    generation: int = 0
    deletion_pending: bool = False
    finalizers: Tuple[str, ...] = ()
    spec_error: Optional[str] = None
    # precondition for finalizer patches; bumps on every write, so not part of equality
    resource_version: Optional[str] = dataclasses.field(default=None, compare=False)


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "spec"
        parts.append(f"spec.{loc}: {err.get('msg')}")
    return "; ".join(parts)


class DesiredStateStore:
    """
    In-memory cache of KafkaTopic objects keyed by ReconcileKey.
    Thread-safe; the watch feed is the only writer apart from ``remove``,
    which the reconciler calls once a deletion is confirmed.

    Every mutation made through the watch-feed API calls ``on_change(key)``
    after the lock is released (the controller wires this to the work queue).
    Events that leave the entry as it was (echoes of the operator's own
    status and finalizer patches) only refresh the cached resourceVersion.
    """

    def __init__(self, on_change: Optional[Callable[[ReconcileKey], None]] = None):
        self._entries: Dict[ReconcileKey, DesiredEntry] = {}
        self._lock = threading.RLock()
        self._on_change = on_change
        self._synced = threading.Event()

    def set_change_hook(self, on_change: Callable[[ReconcileKey], None]) -> None:
        self._on_change = on_change

    @property
    def synced(self) -> bool:
        """True once the first full list has been loaded."""
        return self._synced.is_set()

    # -------- reads --------

    def get(self, key: ReconcileKey) -> Optional[TopicSpec]:
        with self._lock:
            entry = self._entries.get(key)
            return entry.spec if entry else None

    def entry(self, key: ReconcileKey) -> Optional[DesiredEntry]:
        with self._lock:
            return self._entries.get(key)

    def list_keys(self) -> Set[ReconcileKey]:
        with self._lock:
            return set(self._entries)

    def is_deletion_pending(self, key: ReconcileKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return bool(entry and entry.deletion_pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------- watch feed --------

    def upsert(self, obj: dict) -> ReconcileKey:
        """Apply an ADDED/MODIFIED object. Objects being deleted become deletion intent."""
        meta = obj.get("metadata") or {}
        if meta.get("deletionTimestamp"):
            return self.mark_deleted(obj)

        key = ReconcileKey.from_object(obj)
        with self._lock:
            previous = self._entries.get(key)
            spec, error = self._parse(obj, previous)
            entry = DesiredEntry(
                key=key,
                spec=spec,
                generation=int(meta.get("generation") or 0),
                deletion_pending=False,
                finalizers=tuple(meta.get("finalizers") or ()),
                spec_error=error,
                resource_version=meta.get("resourceVersion"),
            )
            self._entries[key] = entry
        if entry == previous:
            logger.debug("No desired-state change for %s", key)
        else:
            self._notify(key)
        return key

    def mark_deleted(self, obj: dict) -> ReconcileKey:
        """Record deletion intent; the entry stays until the topic is confirmed gone."""
        key = ReconcileKey.from_object(obj)
        meta = obj.get("metadata") or {}
        with self._lock:
            previous = self._entries.get(key)
            base = previous
            if base is None:
                spec, error = self._parse(obj, None)
                base = DesiredEntry(key=key, spec=spec, spec_error=error)
            entry = dataclasses.replace(
                base,
                deletion_pending=True,
                finalizers=tuple(meta.get("finalizers") or ()),
                resource_version=meta.get("resourceVersion") or base.resource_version,
            )
            self._entries[key] = entry
        if entry == previous:
            logger.debug("Deletion of %s already pending", key)
            return key
        logger.info("Deletion requested for %s", key)
        self._notify(key)
        return key

    def replace(self, objects: Iterable[dict]) -> None:
        """Load a full list. Known keys missing from it missed their DELETED event."""
        seen: Set[ReconcileKey] = set()
        for obj in objects:
            seen.add(self.upsert(obj))
        with self._lock:
            vanished = [
                (key, entry) for key, entry in self._entries.items()
                if key not in seen and not entry.deletion_pending
            ]
            for key, entry in vanished:
                self._entries[key] = dataclasses.replace(entry, deletion_pending=True, finalizers=())
        for key, _ in vanished:
            logger.info("Object %s disappeared while not watching; treating as deleted", key)
            self._notify(key)
        self._synced.set()

    # -------- reconciler --------

    def remove(self, key: ReconcileKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def record_finalizers(
        self, key: ReconcileKey, finalizers: Iterable[str], resource_version: Optional[str] = None
    ) -> None:
        """Remember finalizers the reconciler just wrote (no change hook: not a spec change)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries[key] = dataclasses.replace(
                    entry,
                    finalizers=tuple(finalizers),
                    resource_version=resource_version or entry.resource_version,
                )

    # -------- helpers --------

    def _parse(self, obj: dict, previous: Optional[DesiredEntry]) -> Tuple[Optional[TopicSpec], Optional[str]]:
        """Return (spec to keep, validation error). Invalid updates keep the last good spec."""
        kept = previous.spec if previous else None
        try:
            spec = TopicSpec.from_object(obj)
        except ValidationError as exc:
            return kept, _validation_message(exc)
        if kept is not None and kept.name != spec.name:
            return kept, (
                f"spec.name is immutable: topic '{kept.name}' cannot be renamed to '{spec.name}'"
            )
        return spec, None

    def _notify(self, key: ReconcileKey) -> None:
        if self._on_change is not None:
            self._on_change(key)
