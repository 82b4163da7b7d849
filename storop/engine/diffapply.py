import copy
import logging
from logging import Logger
from typing import Iterable, List, Optional, Tuple

import tenacity

from storop.common.models.labels import Labels
from storop.engine.ledger import GenerationLedger
from storop.sensors import OperatorSensor
from storop.store.base import (
    Identity,
    ObjectStore,
    annotations_of,
    generation_of,
    identity_of,
    labels_of,
)
from storop.types.base import JSON
from storop.types.models import ChildResourceRecord
from storop.types.settings import Settings
from storop.utils.errors import (
    AdoptionConflictError,
    ConflictError,
    TransientStoreError,
)

HASH_ANNOTATION = "storop.io/resource-hash"

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
SKIPPED = "skipped"
NO_OP = "no-op"

#: Child kinds searched by label when removing every child of a parent
CHILD_KINDS = ("DaemonSet", "Deployment", "ConfigMap", "StorageClass")


def status_observed_generation(obj: JSON) -> Optional[int]:
    value = (obj.get("status") or {}).get("observedGeneration")
    return int(value) if value is not None else None


class DiffApplyEngine:
    """Brings the children of one parent in line with their desired manifests.

    Every write goes through the object store and is followed by a ledger
    update, so the generation of each child produced by the operator is
    known across restarts.
    """

    def __init__(
        self,
        store: ObjectStore,
        ledger: GenerationLedger,
        settings: Settings = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.settings = settings or Settings()
        self.sensor = sensor or OperatorSensor()
        self.logger = logger or logging.getLogger(__name__)

    def _retrying(self, identity: Identity) -> tenacity.AsyncRetrying:
        budget = self.settings.apply_retry_budget

        def before_sleep(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            self.logger.warning(
                "Writing %s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                identity,
                retry_state.attempt_number,
                budget,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        return tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(budget),
            wait=tenacity.wait_exponential(
                multiplier=self.settings.apply_backoff_base_seconds,
                max=self.settings.apply_backoff_max_seconds,
            ),
            retry=tenacity.retry_if_exception_type(
                (ConflictError, TransientStoreError)
            ),
            before_sleep=before_sleep,
            reraise=True,
        )

    async def reconcile(
        self, parent: Identity, desired: Iterable[JSON]
    ) -> List[ChildResourceRecord]:
        """Apply every desired child, then delete recorded children that are no longer desired.

        Returns the ledger records of the children owned by the parent.
        """
        desired = list(desired)
        wanted = set()
        for child in desired:
            wanted.add(identity_of(child))
            await self.apply(parent, child)

        for record in self.ledger.children_of(parent):
            identity = Identity(record.kind, record.namespace, record.name)
            if identity not in wanted:
                self.logger.info(f"{identity} is no longer desired by {parent}")
                await self.delete(parent, identity)
        return self.ledger.children_of(parent)

    async def apply(self, parent: Identity, desired: JSON) -> Optional[str]:
        identity = identity_of(desired)
        state = self.sensor.on_resource_sync_start(
            parent.kind, parent.name, identity.name, identity.namespace, identity.kind
        )
        operation = None
        try:
            async for attempt in self._retrying(identity):
                with attempt:
                    operation = await self._apply_once(parent, identity, desired)
        except Exception as ex:
            self.sensor.on_resource_sync_complete(
                parent.kind,
                parent.name,
                identity.name,
                identity.namespace,
                identity.kind,
                state,
                operation or "apply",
                False,
                ex,
            )
            raise
        self.sensor.on_resource_sync_complete(
            parent.kind,
            parent.name,
            identity.name,
            identity.namespace,
            identity.kind,
            state,
            operation,
            True,
        )
        return operation

    async def _apply_once(
        self, parent: Identity, identity: Identity, desired: JSON
    ) -> str:
        observed = await self.store.get(identity)
        if observed is None:
            # ConflictError when someone else created it first; the retry re-fetches
            created = await self.store.create(copy.deepcopy(desired))
            await self._record(parent, identity, created)
            self.logger.info(f"Created {identity}")
            return CREATED

        if identity.kind == "StorageClass":
            return await self._apply_storage_class(parent, identity, desired, observed)

        drift = self.drift_reason(identity, desired, observed)
        if drift is None:
            await self._record(parent, identity, observed)
            return NO_OP

        self.sensor.on_resource_drift_detected(
            parent.kind,
            parent.name,
            identity.name,
            identity.namespace,
            identity.kind,
            drift,
        )
        body = self.prepare_update(desired, observed)
        updated = await self.store.update(body)
        await self._record(parent, identity, updated)
        self.logger.info(f"Updated {identity} ({drift} changed)")
        return UPDATED

    def drift_reason(
        self, identity: Identity, desired: JSON, observed: JSON
    ) -> Optional[str]:
        """Returns why the observed child must be rewritten, None when it matches."""
        desired_hash = annotations_of(desired).get(HASH_ANNOTATION)
        if annotations_of(observed).get(HASH_ANNOTATION) != desired_hash:
            return "hash"
        applied, found = self.ledger.observed(identity)
        if found and applied != generation_of(observed):
            return "generation"
        return None

    def prepare_update(self, desired: JSON, observed: JSON) -> JSON:
        """Desired manifest carrying the observed resourceVersion.

        Labels and annotations added by others are kept, ours take precedence.
        """
        body = copy.deepcopy(desired)
        metadata = body["metadata"]
        metadata["resourceVersion"] = observed["metadata"]["resourceVersion"]
        metadata["labels"] = {**labels_of(observed), **(metadata.get("labels") or {})}
        metadata["annotations"] = {
            **annotations_of(observed),
            **(metadata.get("annotations") or {}),
        }
        return body

    async def _apply_storage_class(
        self, parent: Identity, identity: Identity, desired: JSON, observed: JSON
    ) -> str:
        owner = Labels(labels_of(observed)).owner()
        if owner != tuple(parent):
            error = AdoptionConflictError(
                f"{identity} already exists and is not managed by {parent}; "
                "leaving it untouched"
            )
            self.logger.warning(str(error))
            self.sensor.on_adoption_skipped(
                parent.kind, parent.name, identity.name, identity.kind
            )
            return SKIPPED

        await self._record(parent, identity, observed)
        if annotations_of(observed).get(HASH_ANNOTATION) != annotations_of(
            desired
        ).get(HASH_ANNOTATION):
            # Parameters of a StorageClass cannot be changed after creation
            self.logger.warning(
                f"{identity} differs from the desired state but StorageClasses "
                "are immutable; leaving it untouched"
            )
            self.sensor.on_resource_drift_detected(
                parent.kind,
                parent.name,
                identity.name,
                identity.namespace,
                identity.kind,
                "immutable",
            )
            return SKIPPED
        return NO_OP

    async def _record(
        self, parent: Identity, identity: Identity, obj: JSON
    ) -> ChildResourceRecord:
        return await self.ledger.record(
            parent,
            identity,
            generation_of(obj),
            status_observed_generation(obj),
        )

    async def delete(self, parent: Identity, identity: Identity) -> None:
        """Delete a child of the parent and forget it once the deletion is confirmed."""
        state = self.sensor.on_resource_sync_start(
            parent.kind, parent.name, identity.name, identity.namespace, identity.kind
        )
        operation = DELETED
        try:
            async for attempt in self._retrying(identity):
                with attempt:
                    observed = await self.store.get(identity)
                    if observed is not None:
                        owner = Labels(labels_of(observed)).owner()
                        if owner == tuple(parent):
                            await self.store.delete(identity)
                            self.logger.info(f"Deleted {identity}")
                        else:
                            operation = SKIPPED
                            self.logger.warning(
                                f"{identity} is no longer managed by {parent}; "
                                "forgetting it without deleting"
                            )
                    await self.ledger.forget(identity)
        except Exception as ex:
            self.sensor.on_resource_sync_complete(
                parent.kind,
                parent.name,
                identity.name,
                identity.namespace,
                identity.kind,
                state,
                operation,
                False,
                ex,
            )
            raise
        self.sensor.on_resource_sync_complete(
            parent.kind,
            parent.name,
            identity.name,
            identity.namespace,
            identity.kind,
            state,
            operation,
            True,
        )

    async def remove_all(
        self, parent: Identity, kinds: Tuple[str, ...] = CHILD_KINDS
    ) -> None:
        """Delete every child of the parent, recorded or merely labeled."""
        targets = {
            Identity(r.kind, r.namespace, r.name)
            for r in self.ledger.children_of(parent)
        }
        selector = Labels.ownership(*parent).as_str()
        for kind in kinds:
            namespace = None if kind == "StorageClass" else parent.namespace
            for obj in await self.store.list(
                kind, namespace=namespace, label_selector=selector
            ):
                targets.add(identity_of(obj))
        for identity in sorted(targets, key=lambda i: (i.kind, i.namespace or "", i.name)):
            await self.delete(parent, identity)
