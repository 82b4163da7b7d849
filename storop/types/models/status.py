from typing import Optional, List, Dict, Any
from storop.types.base import BaseModel


class GenerationHistory(BaseModel):
    group: str
    kind: str
    namespace: Optional[str]
    name: str
    last_generation: int


class NodeRolloutState(BaseModel):
    PENDING = "Pending"
    CORDONING = "Cordoning"
    DRAINING = "Draining"
    UPDATING = "Updating"
    VERIFYING = "Verifying"
    DONE = "Done"
    FAILED = "Failed"

    TERMINAL = (DONE, FAILED)

    node_name: str
    phase: str
    last_transition_time: Optional[str]
    message: Optional[str]


class NodeRollout(BaseModel):
    #: Generation of the parent resource the plan was made for.
    generation: int
    strategy: Optional[str]
    nodes: List[NodeRolloutState]


class StorageStatus(BaseModel):
    observed_generation: Optional[int]
    children_generations: List[GenerationHistory]
    conditions: Optional[List[Dict[str, Any]]]
    node_rollout: Optional[NodeRollout]
