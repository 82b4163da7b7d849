"""Node by node replacement of CSI node plugin pods.

The node DaemonSet uses the OnDelete update strategy, so a changed template
has no effect until the coordinator deletes the outdated plugin pod of a
node. With the Drain strategy the node is cordoned and every pod holding a
volume of the driver is evicted first, so no mount is served by a plugin
that is going away.
"""
import asyncio
import logging
from logging import Logger
from typing import Awaitable, Callable, Dict, List, Optional

from marshmallow import ValidationError

from storop.common.models.labels import Labels
from storop.store.base import Identity, ObjectStore, labels_of
from storop.store.drainer import NodeDrainer
from storop.sensors import OperatorSensor
from storop.types.base import JSON
from storop.types.models import NodeRollout, NodeRolloutState
from storop.types.schemas import NodeRolloutSchema
from storop.types.settings import Settings
from storop.utils.errors import RolloutAbortedError, RolloutTimeoutError
from storop.utils.helpers import now

ROLLING = "Rolling"
DRAIN = "Drain"

PHASES = {
    ROLLING: [
        NodeRolloutState.UPDATING,
        NodeRolloutState.VERIFYING,
        NodeRolloutState.DONE,
    ],
    DRAIN: [
        NodeRolloutState.CORDONING,
        NodeRolloutState.DRAINING,
        NodeRolloutState.UPDATING,
        NodeRolloutState.VERIFYING,
        NodeRolloutState.DONE,
    ],
}

#: Phases during which a node drained by the coordinator is cordoned
CORDONED_PHASES = (
    NodeRolloutState.CORDONING,
    NodeRolloutState.DRAINING,
    NodeRolloutState.UPDATING,
    NodeRolloutState.VERIFYING,
)


def halted(plan: Optional[NodeRollout]) -> Optional[NodeRolloutState]:
    """Returns the failed node of a halted plan."""
    if plan is None:
        return None
    for node in plan.nodes:
        if node.phase == NodeRolloutState.FAILED:
            return node
    return None


def pod_ready(pod: JSON) -> bool:
    if (pod.get("metadata") or {}).get("deletionTimestamp"):
        return False
    for condition in (pod.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def pod_template_generation(pod: JSON) -> Optional[str]:
    return labels_of(pod).get(Labels.POD_TEMPLATE_GENERATION_LABEL)


class RolloutTable:
    """Rollout plans in progress, one per parent resource."""

    schema = NodeRolloutSchema()

    def __init__(self) -> None:
        self._plans: Dict[Identity, NodeRollout] = {}

    def __contains__(self, parent: Identity) -> bool:
        return parent in self._plans

    def get(self, parent: Identity) -> Optional[NodeRollout]:
        return self._plans.get(parent)

    def put(self, parent: Identity, plan: NodeRollout) -> None:
        self._plans[parent] = plan

    def discard(self, parent: Identity) -> None:
        self._plans.pop(parent, None)

    def restore(self, parent: Identity, status: Optional[JSON]) -> Optional[NodeRollout]:
        """Adopt the plan persisted in `status.nodeRollout` when none is held in memory."""
        if parent in self._plans:
            return self._plans[parent]
        data = (status or {}).get("nodeRollout")
        if not data:
            return None
        try:
            plan = self.schema.load(data)
        except ValidationError as ex:
            logging.getLogger(__name__).warning(
                f"Ignoring unreadable node rollout of {parent}: {ex}"
            )
            return None
        self._plans[parent] = plan
        return plan


class RolloutCoordinator:
    def __init__(
        self,
        store: ObjectStore,
        drainer: NodeDrainer,
        table: RolloutTable,
        settings: Settings = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
        clock: Callable[[], str] = now,
    ) -> None:
        self.store = store
        self.drainer = drainer
        self.table = table
        self.settings = settings or Settings()
        self.sensor = sensor or OperatorSensor()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    async def plugin_pods(
        self, daemon_set: JSON, node_name: str = None
    ) -> List[JSON]:
        metadata = daemon_set["metadata"]
        selector = Labels(daemon_set["spec"]["selector"]["matchLabels"]).as_str()
        field_selector = f"spec.nodeName={node_name}" if node_name else None
        return await self.store.list(
            "Pod",
            namespace=metadata["namespace"],
            label_selector=selector,
            field_selector=field_selector,
        )

    async def outdated_nodes(self, daemon_set: JSON) -> List[str]:
        """Nodes running a plugin pod created from an older DaemonSet template."""
        target = str(daemon_set["metadata"].get("generation") or 0)
        nodes = set()
        for pod in await self.plugin_pods(daemon_set):
            node_name = (pod.get("spec") or {}).get("nodeName")
            if node_name and pod_template_generation(pod) != target:
                nodes.add(node_name)
        return sorted(nodes)

    async def run(
        self,
        parent: Identity,
        generation: int,
        daemon_set: JSON,
        strategy: str,
        driver_name: str,
        still_current: Callable[[], Awaitable[bool]],
        max_concurrent: int = None,
        on_progress: Callable[[NodeRollout], Awaitable[None]] = None,
    ) -> Optional[NodeRollout]:
        """Move every node to the current plugin pod template.

        Returns the plan, or None when no node needs an update. A plan whose
        nodes are all Done is dropped from the table.

        Raises:
            RolloutTimeoutError: a node failed during this call; the plan is halted.
            RolloutAbortedError: the parent changed while the plan was executing.
        """
        plan = self.table.get(parent)
        if plan is not None and plan.generation != generation:
            self.logger.info(
                f"Dropping node rollout of {parent} made for generation {plan.generation}"
            )
            await self.release(plan)
            self.table.discard(parent)
            plan = None

        failed = halted(plan)
        if failed is not None:
            self.logger.info(
                f"Node rollout of {parent} is halted at node {failed.node_name} "
                f"until the resource changes"
            )
            return plan

        outdated = await self.outdated_nodes(daemon_set)
        plan = self._plan(parent, generation, strategy, plan, outdated)
        if plan is None:
            return None

        max_concurrent = max(
            1, max_concurrent or self.settings.rollout_max_concurrent_nodes
        )
        semaphore = asyncio.Semaphore(max_concurrent)
        halt = asyncio.Event()

        async def update(node: NodeRolloutState) -> None:
            async with semaphore:
                if halt.is_set():
                    return
                try:
                    ok = await self.update_node(
                        parent,
                        daemon_set,
                        node,
                        strategy,
                        driver_name,
                        still_current,
                        on_progress,
                        plan,
                    )
                except RolloutAbortedError:
                    halt.set()
                    raise
                if not ok:
                    halt.set()

        todo = [n for n in plan.nodes if n.phase not in NodeRolloutState.TERMINAL]
        results = await asyncio.gather(
            *(update(node) for node in todo), return_exceptions=True
        )
        for result in results:
            if isinstance(result, RolloutAbortedError):
                self.table.discard(parent)
                raise result
        for result in results:
            if isinstance(result, BaseException):
                raise result

        failed = halted(plan)
        if failed is not None:
            self.sensor.on_rollout_halted(
                parent.name, parent.namespace, failed.node_name, failed.message or ""
            )
            raise RolloutTimeoutError(failed.node_name, failed.phase, failed.message)

        if all(n.phase == NodeRolloutState.DONE for n in plan.nodes):
            self.logger.info(f"Node rollout of {parent} finished on {len(plan.nodes)} nodes")
            self.table.discard(parent)
        return plan

    def _plan(
        self,
        parent: Identity,
        generation: int,
        strategy: str,
        plan: Optional[NodeRollout],
        outdated: List[str],
    ) -> Optional[NodeRollout]:
        if plan is None:
            if not outdated:
                return None
            plan = NodeRollout(generation=generation, strategy=strategy, nodes=[])
            self.table.put(parent, plan)
            self.logger.info(f"Planning node rollout of {parent} on {outdated}")
        known = {node.node_name for node in plan.nodes}
        for node_name in outdated:
            if node_name not in known:
                plan.nodes.append(
                    NodeRolloutState(
                        node_name=node_name,
                        phase=NodeRolloutState.PENDING,
                        last_transition_time=self.clock(),
                        message=None,
                    )
                )
        plan.nodes.sort(key=lambda n: n.node_name)
        return plan

    def _transition(
        self, parent: Identity, node: NodeRolloutState, phase: str, message: str = None
    ) -> None:
        old_phase = node.phase
        node.phase = phase
        node.message = message
        node.last_transition_time = self.clock()
        self.logger.info(f"Node {node.node_name} of {parent}: {old_phase} -> {phase}")
        self.sensor.on_node_phase_transition(
            parent.name, parent.namespace, node.node_name, old_phase, phase
        )

    async def update_node(
        self,
        parent: Identity,
        daemon_set: JSON,
        node: NodeRolloutState,
        strategy: str,
        driver_name: str,
        still_current: Callable[[], Awaitable[bool]],
        on_progress: Callable[[NodeRollout], Awaitable[None]] = None,
        plan: NodeRollout = None,
    ) -> bool:
        """Drive one node through the phases of the strategy.

        Returns False when the node ended in Failed.
        """
        phases = PHASES[strategy]
        start = phases.index(node.phase) if node.phase in phases else 0
        try:
            for phase in phases[start:]:
                if not await still_current():
                    raise RolloutAbortedError(
                        f"{parent} changed while updating node {node.node_name}"
                    )
                if node.phase != phase:
                    self._transition(parent, node, phase)
                    if on_progress is not None and plan is not None:
                        await on_progress(plan)

                if phase == NodeRolloutState.CORDONING:
                    await self.drainer.cordon(node.node_name)
                elif phase == NodeRolloutState.DRAINING:
                    if not await self.drain(node.node_name, driver_name):
                        await self.drainer.uncordon(node.node_name)
                        self._fail(parent, node, "timed out evicting pods using the driver")
                        return False
                elif phase == NodeRolloutState.UPDATING:
                    await self.replace_plugin_pod(daemon_set, node.node_name)
                elif phase == NodeRolloutState.VERIFYING:
                    if not await self.verify(daemon_set, node.node_name):
                        self._fail(
                            parent, node, "timed out waiting for the new plugin pod to be ready"
                        )
                        return False
                elif phase == NodeRolloutState.DONE and strategy == DRAIN:
                    await self.drainer.uncordon(node.node_name)
        except RolloutAbortedError:
            if strategy == DRAIN and node.phase in CORDONED_PHASES:
                await self.drainer.uncordon(node.node_name)
            raise
        finally:
            if on_progress is not None and plan is not None and node.phase in NodeRolloutState.TERMINAL:
                await on_progress(plan)
        return True

    def _fail(self, parent: Identity, node: NodeRolloutState, reason: str) -> None:
        phase = node.phase
        message = f"{reason} in phase {phase}"
        self._transition(parent, node, NodeRolloutState.FAILED, message)
        self.logger.error(f"Node {node.node_name} of {parent} failed: {message}")

    async def drain(self, node_name: str, driver_name: str) -> bool:
        """Evict pods using the driver until none is left on the node."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.rollout_drain_timeout_seconds
        while True:
            pods = await self.drainer.driver_pods(node_name, driver_name)
            if not pods:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            self.logger.info(
                f"Evicting {len(pods)} pods using {driver_name} from node {node_name}"
            )
            acks = await asyncio.gather(
                *(self.drainer.evict(pod, remaining) for pod in pods)
            )
            if not all(acks):
                return False

    async def replace_plugin_pod(self, daemon_set: JSON, node_name: str) -> None:
        target = str(daemon_set["metadata"].get("generation") or 0)
        for pod in await self.plugin_pods(daemon_set, node_name):
            if pod_template_generation(pod) != target:
                metadata = pod["metadata"]
                await self.store.delete(
                    Identity("Pod", metadata.get("namespace"), metadata["name"])
                )

    async def verify(self, daemon_set: JSON, node_name: str) -> bool:
        """Wait for a Ready plugin pod of the current template on the node.

        The driver container is Ready only once its readiness check reached the
        driver socket.
        """
        target = str(daemon_set["metadata"].get("generation") or 0)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.rollout_verify_timeout_seconds
        while True:
            for pod in await self.plugin_pods(daemon_set, node_name):
                if pod_template_generation(pod) == target and pod_ready(pod):
                    return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.settings.rollout_poll_interval_seconds)

    async def release(self, plan: NodeRollout) -> None:
        """Uncordon nodes a discarded plan left cordoned.

        A node that failed while verifying is still cordoned, uncordoning is
        idempotent so failed nodes are released too.
        """
        if plan.get("strategy") != DRAIN:
            return
        for node in plan.nodes:
            if node.phase in CORDONED_PHASES or node.phase == NodeRolloutState.FAILED:
                await self.drainer.uncordon(node.node_name)
