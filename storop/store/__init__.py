from .base import (
    Identity,
    ObjectStore,
    identity_of,
    generation_of,
    labels_of,
    annotations_of,
)
from .drainer import NodeDrainer

__all__ = [
    "Identity",
    "ObjectStore",
    "identity_of",
    "generation_of",
    "labels_of",
    "annotations_of",
    "NodeDrainer",
]
