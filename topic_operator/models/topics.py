from pydantic import BaseModel
from typing import Dict, Optional


class TopicSpecView(BaseModel):
    name: str
    partitions: int
    replicationFactor: int
    config: Dict[str, str] = {}


class TopicConditionView(BaseModel):
    phase: str
    lastError: Optional[str] = None
    observedGeneration: int = 0


class TopicStateView(BaseModel):
    namespace: str
    resource: str
    generation: int
    deletionPending: bool
    spec: Optional[TopicSpecView] = None
    specError: Optional[str] = None
    # None until the first pass for this key has finished
    condition: Optional[TopicConditionView] = None


class ReconcileAccepted(BaseModel):
    key: str
    queued: bool = True
