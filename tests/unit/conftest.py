"""Shared fixtures and in-memory fakes of the cluster collaborators."""

import copy
import itertools
from typing import Callable, Dict, List, Optional

import pytest

from storop.common.models.labels import Labels
from storop.engine.diffapply import DiffApplyEngine
from storop.engine.ledger import GenerationLedger
from storop.engine.rollout import RolloutCoordinator, RolloutTable
from storop.engine.reconciler import Reconciler
from storop.store.base import Identity, ObjectStore, identity_of
from storop.store.drainer import NodeDrainer
from storop.types.base import JSON
from storop.types.settings import Settings
from storop.utils.errors import ConflictError

TIMESTAMP = "2024-01-01T00:00:00+00:00"

WRITE_VERBS = ("create", "update", "delete", "patch_status")

#: Kinds for which the API server maintains metadata.generation
GENERATION_KINDS = (
    "DaemonSet",
    "Deployment",
    "CSIDriverDeployment",
    "EFSProvisioner",
    "ManilaProvisioner",
    "CephFSProvisioner",
    "SnapshotController",
    "LocalStorageProvider",
)


def merge_patch(target: JSON, patch: JSON) -> JSON:
    result = dict(target or {})
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_patch(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _field(obj: JSON, path: str):
    value = obj
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(selector: Optional[str], lookup: Callable[[str], Optional[str]]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if lookup(key) != value:
            return False
    return True


class FakeObjectStore(ObjectStore):
    """Object store keeping manifests in memory.

    Mimics the API server where the engine depends on it: resourceVersion
    checks, generation bumps on spec changes and merge-patched status.
    Every call that writes is appended to `journal`.
    """

    def __init__(self) -> None:
        self.objects: Dict[Identity, JSON] = {}
        self.journal: List[tuple] = []
        self.faults: List[tuple] = []
        self.delete_hooks: List[Callable[[JSON], None]] = []
        self._versions = itertools.count(1)

    @property
    def writes(self) -> List[tuple]:
        return [entry for entry in self.journal if entry[0] in WRITE_VERBS]

    def fail(self, verb: str, error: Exception, kind: str = None, times: int = 1) -> None:
        """Make the next `times` calls of `verb` raise `error`."""
        for _ in range(times):
            self.faults.append((verb, kind, error))

    def _check_fault(self, verb: str, identity: Identity) -> None:
        for i, (fverb, fkind, error) in enumerate(self.faults):
            if fverb == verb and fkind in (None, identity.kind):
                del self.faults[i]
                raise error

    def put(self, obj: JSON) -> JSON:
        """Store an object as another actor of the cluster would."""
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata["resourceVersion"] = str(next(self._versions))
        metadata.setdefault("uid", f"uid-{metadata['name']}")
        if obj["kind"] in GENERATION_KINDS:
            metadata.setdefault("generation", 1)
        self.objects[identity_of(obj)] = obj
        return copy.deepcopy(obj)

    def remove(self, identity: Identity) -> None:
        obj = self.objects.pop(identity, None)
        if obj is not None:
            for hook in self.delete_hooks:
                hook(obj)

    async def get(self, identity: Identity) -> Optional[JSON]:
        self._check_fault("get", identity)
        obj = self.objects.get(identity)
        return copy.deepcopy(obj) if obj is not None else None

    async def create(self, obj: JSON) -> JSON:
        identity = identity_of(obj)
        self._check_fault("create", identity)
        if identity in self.objects:
            raise ConflictError(f"{identity} already exists")
        self.journal.append(("create", str(identity)))
        obj = copy.deepcopy(obj)
        obj["metadata"].pop("resourceVersion", None)
        return self.put(obj)

    async def update(self, obj: JSON) -> JSON:
        identity = identity_of(obj)
        self._check_fault("update", identity)
        current = self.objects.get(identity)
        if current is None:
            raise ConflictError(f"{identity} does not exist")
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"{identity} was modified")
        self.journal.append(("update", str(identity)))
        obj = copy.deepcopy(obj)
        metadata = obj["metadata"]
        metadata["uid"] = current["metadata"].get("uid")
        if obj["kind"] in GENERATION_KINDS:
            generation = current["metadata"].get("generation", 1)
            if obj.get("spec") != current.get("spec"):
                generation += 1
            metadata["generation"] = generation
        if "status" in current:
            obj["status"] = current["status"]
        metadata["resourceVersion"] = str(next(self._versions))
        self.objects[identity] = obj
        return copy.deepcopy(obj)

    async def delete(self, identity: Identity) -> None:
        self._check_fault("delete", identity)
        if identity in self.objects:
            self.journal.append(("delete", str(identity)))
            self.remove(identity)

    async def list(
        self,
        kind: str,
        namespace: str = None,
        label_selector: str = None,
        field_selector: str = None,
    ) -> List[JSON]:
        result = []
        for identity, obj in sorted(self.objects.items(), key=lambda i: str(i[0])):
            if identity.kind != kind:
                continue
            if namespace is not None and identity.namespace != namespace:
                continue
            labels = (obj.get("metadata") or {}).get("labels") or {}
            if not _matches(label_selector, labels.get):
                continue
            if not _matches(field_selector, lambda path: _field(obj, path)):
                continue
            result.append(copy.deepcopy(obj))
        return result

    async def patch_status(self, identity: Identity, status: JSON) -> JSON:
        self._check_fault("patch_status", identity)
        current = self.objects[identity]
        self.journal.append(("patch_status", str(identity)))
        current["status"] = merge_patch(current.get("status") or {}, status)
        current["metadata"]["resourceVersion"] = str(next(self._versions))
        return copy.deepcopy(current)


class FakeNodeDrainer(NodeDrainer):
    """Drainer acting directly on a FakeObjectStore.

    Pods named in `stuck` never leave their node.
    """

    def __init__(self, store: FakeObjectStore) -> None:
        self.store = store
        self.cordoned = set()
        self.stuck = set()

    async def cordon(self, node_name: str) -> None:
        self.store.journal.append(("cordon", node_name))
        self.cordoned.add(node_name)

    async def uncordon(self, node_name: str) -> None:
        self.store.journal.append(("uncordon", node_name))
        self.cordoned.discard(node_name)

    async def evict(self, pod: JSON, timeout: float) -> bool:
        name = pod["metadata"]["name"]
        if name in self.stuck:
            return False
        self.store.journal.append(("evict", name))
        self.store.remove(identity_of(pod))
        return True


def plugin_pod(
    daemon_set: JSON, node_name: str, generation: int, ready: bool = True
) -> JSON:
    metadata = daemon_set["metadata"]
    labels = dict(daemon_set["spec"]["selector"]["matchLabels"])
    labels[Labels.POD_TEMPLATE_GENERATION_LABEL] = str(generation)
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": f"{metadata['name']}-{node_name}-{generation}",
            "namespace": metadata["namespace"],
            "labels": labels,
            "ownerReferences": [{"kind": "DaemonSet", "name": metadata["name"]}],
        },
        "spec": {"nodeName": node_name},
        "status": {
            "phase": "Running",
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        },
    }


def workload_pod(
    name: str, node_name: str, driver_name: str, namespace: str = "apps"
) -> JSON:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "nodeName": node_name,
            "volumes": [{"name": "data", "csi": {"driver": driver_name}}],
        },
        "status": {"phase": "Running"},
    }


class FakeDaemonSetController:
    """Recreates deleted plugin pods from the current DaemonSet template.

    Pods recreated on a node listed in `unhealthy` never become Ready.
    """

    def __init__(self, store: FakeObjectStore) -> None:
        self.store = store
        self.unhealthy = set()
        store.delete_hooks.append(self.on_delete)

    def on_delete(self, pod: JSON) -> None:
        if pod["kind"] != "Pod":
            return
        refs = pod["metadata"].get("ownerReferences") or []
        owners = [ref["name"] for ref in refs if ref.get("kind") == "DaemonSet"]
        if not owners:
            return
        daemon_set = self.store.objects.get(
            Identity("DaemonSet", pod["metadata"]["namespace"], owners[0])
        )
        if daemon_set is None:
            return
        node_name = pod["spec"]["nodeName"]
        self.store.put(
            plugin_pod(
                daemon_set,
                node_name,
                daemon_set["metadata"]["generation"],
                ready=node_name not in self.unhealthy,
            )
        )


def csi_driver_body(
    name: str = "example",
    namespace: str = "storage",
    generation: int = 1,
    **spec,
) -> JSON:
    body_spec = {
        "driverName": "csi.example.com",
        "driverSocket": "/var/lib/csi/sockets/csi.sock",
        "nodeTemplate": {
            "spec": {
                "containers": [{"name": "driver", "image": "example/driver:v1"}]
            }
        },
    }
    body_spec.update(spec)
    return {
        "apiVersion": "storage.openshift.io/v1alpha1",
        "kind": "CSIDriverDeployment",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "generation": generation,
        },
        "spec": body_spec,
    }


@pytest.fixture
def settings():
    return Settings(
        apply_retry_budget=3,
        apply_backoff_base_seconds=0,
        apply_backoff_max_seconds=0,
        rollout_drain_timeout_seconds=0.2,
        rollout_verify_timeout_seconds=0.05,
        rollout_poll_interval_seconds=0.01,
    )


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def drainer(store):
    return FakeNodeDrainer(store)


@pytest.fixture
def daemon_set_controller(store):
    return FakeDaemonSetController(store)


@pytest.fixture
def ledger(store):
    return GenerationLedger(store, "storop-system", "storop-generation-ledger")


@pytest.fixture
def engine(store, ledger, settings):
    return DiffApplyEngine(store, ledger, settings=settings)


@pytest.fixture
def table():
    return RolloutTable()


@pytest.fixture
def coordinator(store, drainer, table, settings):
    return RolloutCoordinator(
        store, drainer, table, settings=settings, clock=lambda: TIMESTAMP
    )


@pytest.fixture
def reconciler(store, engine, coordinator, table, settings):
    return Reconciler(
        store, engine, coordinator, table, settings=settings, clock=lambda: TIMESTAMP
    )
