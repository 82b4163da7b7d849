from typing import Iterable, List, Optional

from storop.types.base import JSON
from storop.types.models import (
    ChildResourceRecord,
    GenerationHistory,
    NodeRollout,
    NodeRolloutState,
    StorageStatus,
)
from storop.types.schemas import StorageStatusSchema
from storop.utils.helpers import upsert_condition

READY = "Ready"
PROGRESSING = "Progressing"
DEGRADED = "Degraded"

API_GROUPS = {
    "DaemonSet": "apps",
    "Deployment": "apps",
    "StorageClass": "storage.k8s.io",
    "ConfigMap": "",
}

status_schema = StorageStatusSchema()


def children_generations(
    records: Iterable[ChildResourceRecord],
) -> List[GenerationHistory]:
    ordered = sorted(records, key=lambda r: (r.kind, r.namespace or "", r.name))
    return [
        GenerationHistory(
            group=API_GROUPS.get(record.kind, ""),
            kind=record.kind,
            namespace=record.namespace,
            name=record.name,
            last_generation=record.applied_generation,
        )
        for record in ordered
    ]


def rollout_unfinished(rollout: Optional[NodeRollout]) -> bool:
    return rollout is not None and any(
        node.phase != NodeRolloutState.DONE for node in rollout.nodes
    )


def rollout_failed(rollout: Optional[NodeRollout]) -> Optional[NodeRolloutState]:
    if rollout is None:
        return None
    for node in rollout.nodes:
        if node.phase == NodeRolloutState.FAILED:
            return node
    return None


def _condition(type: str, value: bool, reason: str, message: str = "") -> JSON:
    return {
        "type": type,
        "status": "True" if value else "False",
        "reason": reason,
        "message": message,
    }


def compute_status(
    generation: int,
    previous: Optional[JSON],
    records: Iterable[ChildResourceRecord],
    rollout: Optional[NodeRollout],
    pending: bool,
    error: Optional[Exception],
    timestamp: str,
) -> JSON:
    """Fold ledger records and rollout progress into the status of a parent.

    `observedGeneration` only moves forward, and only to `generation` when
    the pass left nothing pending: no error, no unfinished or halted rollout.
    `timestamp` is used for every condition whose status flips.
    """
    previous = previous or {}
    previous_generation = int(previous.get("observedGeneration") or 0)
    failed_node = rollout_failed(rollout)
    in_rollout = rollout_unfinished(rollout)
    blocked = pending or error is not None or in_rollout

    observed_generation = (
        previous_generation if blocked else max(previous_generation, generation)
    )

    if error is not None:
        degraded = _condition(DEGRADED, True, error.__class__.__name__, str(error))
    elif failed_node is not None:
        degraded = _condition(
            DEGRADED,
            True,
            "RolloutHalted",
            f"Node {failed_node.node_name} failed: {failed_node.message or ''}".strip(),
        )
    else:
        degraded = _condition(DEGRADED, False, "AsExpected")

    if in_rollout and failed_node is None:
        remaining = sum(1 for n in rollout.nodes if n.phase != NodeRolloutState.DONE)
        progressing = _condition(
            PROGRESSING,
            True,
            "RollingOut",
            f"{remaining} of {len(rollout.nodes)} nodes still updating",
        )
    elif pending and error is None:
        progressing = _condition(PROGRESSING, True, "Reconciling")
    else:
        progressing = _condition(PROGRESSING, False, "AsExpected")

    if not blocked:
        ready = _condition(READY, True, "AsExpected")
    elif degraded["status"] == "True":
        ready = _condition(READY, False, degraded["reason"], degraded["message"])
    else:
        ready = _condition(READY, False, progressing["reason"], progressing["message"])

    conditions = previous.get("conditions") or []
    for condition in (ready, progressing, degraded):
        conditions = upsert_condition(conditions, condition, timestamp)
    conditions = sorted(conditions, key=lambda c: c.get("type", ""))

    status = StorageStatus(
        observed_generation=observed_generation,
        children_generations=children_generations(records),
        conditions=conditions,
        node_rollout=rollout if in_rollout else None,
    )
    return status_schema.dump(status)
