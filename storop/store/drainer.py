import abc
import asyncio
import logging
from typing import List

import aiohttp
from kubernetes_asyncio.client import ApiClient, ApiException, CoreV1Api

from storop.store.base import Identity, ObjectStore
from storop.types.base import JSON
from storop.utils.errors import convert_api_exception, not_found_error

logger = logging.getLogger(__name__)

TERMINAL_POD_PHASES = ("Succeeded", "Failed")


def owned_by_daemon_set(pod: JSON) -> bool:
    refs = (pod.get("metadata") or {}).get("ownerReferences") or []
    return any(ref.get("kind") == "DaemonSet" for ref in refs)


class NodeDrainer(abc.ABC):
    """Cordons nodes and evicts the pods that hold volumes of a CSI driver."""

    store: ObjectStore

    @abc.abstractmethod
    async def cordon(self, node_name: str) -> None:
        ...

    @abc.abstractmethod
    async def uncordon(self, node_name: str) -> None:
        ...

    @abc.abstractmethod
    async def evict(self, pod: JSON, timeout: float) -> bool:
        """Evict the pod and wait until it is gone.

        Returns True once the pod no longer exists, False when `timeout` passed first.
        """

    async def driver_pods(self, node_name: str, driver_name: str) -> List[JSON]:
        """Non-daemon pods on the node with at least one volume served by the driver."""
        pods = await self.store.list(
            "Pod", field_selector=f"spec.nodeName={node_name}"
        )
        result = []
        for pod in pods:
            if owned_by_daemon_set(pod):
                continue
            if (pod.get("status") or {}).get("phase") in TERMINAL_POD_PHASES:
                continue
            if await self.uses_driver(pod, driver_name):
                result.append(pod)
        return result

    async def uses_driver(self, pod: JSON, driver_name: str) -> bool:
        namespace = pod["metadata"].get("namespace")
        for volume in (pod.get("spec") or {}).get("volumes") or []:
            csi = volume.get("csi")
            if csi and csi.get("driver") == driver_name:
                return True
            claim = volume.get("persistentVolumeClaim")
            if not claim:
                continue
            pvc = await self.store.get(
                Identity("PersistentVolumeClaim", namespace, claim["claimName"])
            )
            volume_name = ((pvc or {}).get("spec") or {}).get("volumeName")
            if not volume_name:
                continue
            pv = await self.store.get(Identity("PersistentVolume", None, volume_name))
            pv_csi = ((pv or {}).get("spec") or {}).get("csi") or {}
            if pv_csi.get("driver") == driver_name:
                return True
        return False


class KubernetesNodeDrainer(NodeDrainer):
    def __init__(
        self, api_client: ApiClient, store: ObjectStore, poll_interval: float = 2.0
    ) -> None:
        self.core_v1_api = CoreV1Api(api_client)
        self.store = store
        self.poll_interval = poll_interval

    async def _set_unschedulable(self, node_name: str, value: bool) -> None:
        try:
            await self.core_v1_api.patch_node(
                name=node_name, body={"spec": {"unschedulable": value}}
            )
        except (ApiException, aiohttp.ClientError, asyncio.TimeoutError) as ex:
            raise convert_api_exception(ex) from ex

    async def cordon(self, node_name: str) -> None:
        logger.info(f"Cordoning node {node_name}")
        await self._set_unschedulable(node_name, True)

    async def uncordon(self, node_name: str) -> None:
        logger.info(f"Uncordoning node {node_name}")
        await self._set_unschedulable(node_name, False)

    async def evict(self, pod: JSON, timeout: float) -> bool:
        name = pod["metadata"]["name"]
        namespace = pod["metadata"]["namespace"]
        eviction = {
            "apiVersion": "policy/v1",
            "kind": "Eviction",
            "metadata": {"name": name, "namespace": namespace},
        }
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                await self.core_v1_api.create_namespaced_pod_eviction(
                    name=name, namespace=namespace, body=eviction
                )
                break
            except ApiException as ex:
                if not_found_error(ex):
                    return True
                # 429: a PodDisruptionBudget blocks the eviction for now
                if ex.status != 429:
                    raise convert_api_exception(ex) from ex
            except (aiohttp.ClientError, asyncio.TimeoutError) as ex:
                raise convert_api_exception(ex) from ex
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

        while loop.time() < deadline:
            current = await self.store.get(Identity("Pod", namespace, name))
            if current is None or current["metadata"].get("uid") != pod[
                "metadata"
            ].get("uid"):
                return True
            await asyncio.sleep(self.poll_interval)
        return False
