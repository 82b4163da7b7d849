import asyncio
import logging
from logging import Logger
from typing import Dict, List, Optional, Tuple

from marshmallow import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from storop.common.models.labels import Labels
from storop.store.base import Identity, ObjectStore
from storop.types.models import ChildResourceRecord
from storop.types.schemas import ChildResourceRecordSchema
from storop.utils.errors import ConflictError

PERSIST_ATTEMPTS = 3


class GenerationLedger:
    """Durable record of the generations the operator wrote for each child object.

    Records live in memory and are mirrored into a ConfigMap in the operator
    namespace, one JSON document per child keyed by `<kind>.<namespace>.<name>`.
    The ConfigMap is rewritten only when a record changes.
    """

    schema = ChildResourceRecordSchema()

    def __init__(
        self,
        store: ObjectStore,
        namespace: str,
        name: str,
        logger: Logger = None,
    ) -> None:
        self.store = store
        self.identity = Identity("ConfigMap", namespace, name)
        self.logger = logger or logging.getLogger(__name__)
        self._records: Dict[str, ChildResourceRecord] = {}
        self._resource_version: Optional[str] = None
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def load(self) -> None:
        """Read the persisted records, replacing whatever is held in memory."""
        config_map = await self.store.get(self.identity)
        records = {}
        if config_map is not None:
            self._resource_version = config_map["metadata"].get("resourceVersion")
            for key, value in (config_map.get("data") or {}).items():
                try:
                    records[key] = self.schema.loads(value)
                except (ValidationError, ValueError) as ex:
                    self.logger.warning(f"Dropping unreadable ledger entry {key}: {ex}")
        else:
            self._resource_version = None
        self._records = records
        self.logger.info(f"Loaded {len(records)} ledger entries from {self.identity}")

    def get(self, child: Identity) -> Optional[ChildResourceRecord]:
        return self._records.get(child.key())

    def observed(self, child: Identity) -> Tuple[int, bool]:
        """Returns the generation last applied to the child and whether a record exists."""
        record = self.get(child)
        if record is None:
            return 0, False
        return record.applied_generation, True

    def children_of(self, parent: Identity) -> List[ChildResourceRecord]:
        children = [
            record
            for record in self._records.values()
            if (record.parent_kind, record.parent_namespace, record.parent_name)
            == (parent.kind, parent.namespace, parent.name)
        ]
        return sorted(children, key=lambda r: (r.kind, r.namespace or "", r.name))

    async def record(
        self,
        parent: Identity,
        child: Identity,
        applied_generation: int,
        observed_generation: int = None,
    ) -> ChildResourceRecord:
        new = ChildResourceRecord(
            kind=child.kind,
            namespace=child.namespace,
            name=child.name,
            applied_generation=applied_generation,
            observed_generation=observed_generation,
            parent_kind=parent.kind,
            parent_namespace=parent.namespace,
            parent_name=parent.name,
        )
        async with self._lock:
            current = self._records.get(child.key())
            if current == new:
                return current
            self._records[child.key()] = new
            await self._persist()
        return new

    async def forget(self, child: Identity) -> None:
        async with self._lock:
            if self._records.pop(child.key(), None) is None:
                return
            await self._persist()

    def _manifest(self) -> dict:
        metadata = {
            "name": self.identity.name,
            "namespace": self.identity.namespace,
            "labels": Labels()
            .include_kubernetes_managed_by(Labels.OPERATOR_NAME)
            .include_storop_component_type("generation-ledger")
            .as_dict(),
        }
        if self._resource_version:
            metadata["resourceVersion"] = self._resource_version
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": metadata,
            "data": {
                key: self.schema.dumps(record)
                for key, record in sorted(self._records.items())
            },
        }

    async def _refresh_version(self) -> None:
        current = await self.store.get(self.identity)
        self._resource_version = (
            current["metadata"].get("resourceVersion") if current else None
        )
        self.logger.debug("Ledger write conflicted, retrying with the latest version")

    async def _persist(self) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(PERSIST_ATTEMPTS),
            retry=retry_if_exception_type(ConflictError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    await self._refresh_version()
                manifest = self._manifest()
                if self._resource_version:
                    result = await self.store.update(manifest)
                else:
                    result = await self.store.create(manifest)
                self._resource_version = result["metadata"].get("resourceVersion")
