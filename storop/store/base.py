import abc
from typing import Dict, List, NamedTuple, Optional

from storop.types.base import JSON


class Identity(NamedTuple):
    """(kind, namespace, name) of an object; namespace is None for cluster scoped kinds."""

    kind: str
    namespace: Optional[str]
    name: str

    def key(self) -> str:
        return f"{self.kind}.{self.namespace or ''}.{self.name}"

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


def identity_of(obj: JSON) -> Identity:
    metadata = obj.get("metadata") or {}
    return Identity(obj["kind"], metadata.get("namespace") or None, metadata["name"])


def generation_of(obj: JSON) -> int:
    """Returns metadata.generation, 0 for kinds that do not carry one."""
    if not obj:
        return 0
    return int((obj.get("metadata") or {}).get("generation") or 0)


def labels_of(obj: JSON) -> Dict[str, str]:
    return dict((obj.get("metadata") or {}).get("labels") or {})


def annotations_of(obj: JSON) -> Dict[str, str]:
    return dict((obj.get("metadata") or {}).get("annotations") or {})


class ObjectStore(abc.ABC):
    """Typed access to cluster objects, represented as plain manifests.

    Every failure is raised as one of the errors from `storop.utils.errors`;
    a missing object is reported as None by `get` and ignored by `delete`.
    """

    @abc.abstractmethod
    async def get(self, identity: Identity) -> Optional[JSON]:
        ...

    @abc.abstractmethod
    async def create(self, obj: JSON) -> JSON:
        """Create the object. Raises ConflictError when it already exists."""

    @abc.abstractmethod
    async def update(self, obj: JSON) -> JSON:
        """Replace the object.

        `metadata.resourceVersion` must be set; a stale version raises ConflictError.
        """

    @abc.abstractmethod
    async def delete(self, identity: Identity) -> None:
        ...

    @abc.abstractmethod
    async def list(
        self,
        kind: str,
        namespace: str = None,
        label_selector: str = None,
        field_selector: str = None,
    ) -> List[JSON]:
        ...

    @abc.abstractmethod
    async def patch_status(self, identity: Identity, status: JSON) -> JSON:
        ...
