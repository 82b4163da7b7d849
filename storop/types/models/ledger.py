from typing import Optional
from storop.types.base import BaseModel


class ChildResourceRecord(BaseModel):
    """Generation bookkeeping for one child object."""

    kind: str
    namespace: Optional[str]
    name: str
    #: Generation of the child as returned by the last write of the operator.
    applied_generation: int
    #: Last generation the child's controller reported as observed.
    observed_generation: Optional[int]
    parent_kind: str
    parent_namespace: Optional[str]
    parent_name: str
