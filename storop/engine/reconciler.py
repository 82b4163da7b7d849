import logging
from logging import Logger
from typing import Callable, Dict, Optional, Type

from storop.engine.diffapply import DiffApplyEngine
from storop.engine.rollout import RolloutCoordinator, RolloutTable
from storop.engine.status import compute_status
from storop.resources import KINDS, BaseResource
from storop.sensors import OperatorSensor
from storop.store.base import Identity, ObjectStore, generation_of
from storop.types.base import JSON
from storop.types.models import NodeRollout
from storop.types.schemas import OperatorSpecSchema
from storop.types.settings import Settings
from storop.utils.errors import (
    ConflictError,
    InvalidSpecError,
    RolloutAbortedError,
    RolloutTimeoutError,
    TransientStoreError,
)
from storop.utils.helpers import deep_compare_dict, now

#: Status fields written by the operator
STATUS_FIELDS = ("observedGeneration", "childrenGenerations", "conditions", "nodeRollout")


def deleting(obj: Optional[JSON]) -> bool:
    return obj is None or bool((obj.get("metadata") or {}).get("deletionTimestamp"))


class Reconciler:
    """One reconciliation pass for one parent resource.

    synthesize -> diff/apply -> node rollout -> status write. Instances are
    handed to the ReconcileQueue as its handler.
    """

    def __init__(
        self,
        store: ObjectStore,
        engine: DiffApplyEngine,
        coordinator: RolloutCoordinator,
        table: RolloutTable,
        settings: Settings = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
        kinds: Dict[str, Type[BaseResource]] = None,
        clock: Callable[[], str] = now,
    ) -> None:
        self.store = store
        self.engine = engine
        self.coordinator = coordinator
        self.table = table
        self.settings = settings or Settings()
        self.sensor = sensor or OperatorSensor()
        self.logger = logger or logging.getLogger(__name__)
        self.kinds = kinds or KINDS
        self.clock = clock

    async def __call__(self, key: Identity, trigger_source: str = "event") -> None:
        body = await self.store.get(key)
        generation = generation_of(body)
        state = self.sensor.on_reconcile_start(
            key.kind, key.name, key.namespace, generation, trigger_source
        )
        try:
            if deleting(body):
                await self.finalize(key)
            else:
                await self.reconcile(key, body)
        except Exception as ex:
            self.sensor.on_reconcile_complete(
                key.kind, key.name, key.namespace, state, False, ex
            )
            raise
        self.sensor.on_reconcile_complete(key.kind, key.name, key.namespace, state, True)

    async def finalize(self, key: Identity) -> None:
        """Delete every child of a parent that is gone or being deleted."""
        self.logger.info(f"Removing children of {key}")
        resource_cls = self.kinds[key.kind]
        await self.engine.remove_all(key, resource_cls.CHILD_KINDS)
        plan = self.table.get(key)
        if plan is not None:
            await self.coordinator.release(plan)
        self.table.discard(key)

    async def reconcile(self, key: Identity, body: JSON) -> None:
        resource_cls = self.kinds[key.kind]
        generation = generation_of(body)
        previous = dict(body.get("status") or {})
        self.table.restore(key, previous)

        management_state = (body.get("spec") or {}).get(
            "managementState", OperatorSpecSchema.MANAGED
        )
        if management_state == OperatorSpecSchema.UNMANAGED:
            self.logger.info(f"{key} is unmanaged, skipping")
            return
        if management_state == OperatorSpecSchema.REMOVED:
            self.logger.info(f"{key} is removed, deleting its children")
            await self.finalize(key)
            status = compute_status(generation, previous, [], None, False, None, self.clock())
            await self.write_status(key, previous, status)
            return

        error: Optional[Exception] = None
        requeue: Optional[Exception] = None
        last_written = {"status": previous}

        async def still_current() -> bool:
            current = await self.store.get(key)
            return not deleting(current) and generation_of(current) == generation

        async def on_progress(plan: NodeRollout) -> None:
            status = compute_status(
                generation,
                last_written["status"],
                self.engine.ledger.children_of(key),
                plan,
                True,
                None,
                self.clock(),
            )
            last_written["status"] = await self.write_status(
                key, last_written["status"], status
            )

        rollout = None
        try:
            resource = resource_cls.from_body(body, self.settings, self.logger)
            await self.engine.reconcile(key, resource.desired_children())
            if resource.has_node_rollout:
                daemon_set = await self.store.get(resource.node_daemon_set)
                if daemon_set is not None:
                    rollout = await self.coordinator.run(
                        key,
                        generation,
                        daemon_set,
                        resource.update_strategy,
                        resource.driver_name,
                        still_current,
                        resource.max_concurrent_node_updates,
                        on_progress,
                    )
        except InvalidSpecError as ex:
            self.logger.error(f"{key} has an invalid spec: {ex}")
            error = ex
        except RolloutTimeoutError as ex:
            self.logger.error(f"Node rollout of {key} halted: {ex}")
            # Reported as Degraded through the halted plan kept in the table
        except RolloutAbortedError as ex:
            self.logger.info(f"{ex}; starting over")
            raise
        except (ConflictError, TransientStoreError) as ex:
            error = ex
            requeue = ex

        if rollout is None:
            rollout = self.table.get(key)
        status = compute_status(
            generation,
            last_written["status"],
            self.engine.ledger.children_of(key),
            rollout,
            False,
            error,
            self.clock(),
        )
        await self.write_status(key, last_written["status"], status)
        if requeue is not None:
            raise requeue

    async def write_status(self, key: Identity, previous: JSON, status: JSON) -> JSON:
        """Patch the status when it differs from `previous`; returns the status now in place."""
        current = {k: previous[k] for k in STATUS_FIELDS if k in previous}
        if deep_compare_dict(current, status):
            return previous
        patch = dict(status)
        for field in STATUS_FIELDS:
            if field in previous and field not in status:
                patch[field] = None
        changed = sorted(
            k for k in set(current) | set(status) if current.get(k) != status.get(k)
        )
        await self.store.patch_status(key, patch)
        self.sensor.on_status_update(key.kind, key.name, key.namespace, changed)
        written = {k: v for k, v in previous.items() if k not in STATUS_FIELDS}
        written.update(status)
        return written
