from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Phase(str, Enum):
    PENDING = "Pending"
    SYNCED = "Synced"
    ERROR = "Error"


class StatusCondition(BaseModel):
    """Outcome of the latest reconcile pass, mirrored on the CR status."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    topicName: Optional[str] = None
    lastError: Optional[str] = None
    observedGeneration: int = 0

    def to_status(self) -> dict:
        """Body of the ``status`` subresource (``lastError`` is cleared explicitly)."""
        return {
            "phase": self.phase.value,
            "topicName": self.topicName,
            "lastError": self.lastError,
            "observedGeneration": self.observedGeneration,
        }
