"""Unit tests for the kubernetes backed object store and node drainer."""

import pytest
from unittest.mock import AsyncMock, Mock
from kubernetes_asyncio.client import ApiException

from storop.store.base import Identity
from storop.store.drainer import KubernetesNodeDrainer
from storop.store.kubernetes import KubernetesObjectStore
from storop.utils.errors import ConflictError, TransientStoreError

from .conftest import workload_pod

DAEMON_SET = Identity("DaemonSet", "storage", "example-node")


@pytest.fixture
def api_client():
    client = Mock()
    client.sanitize_for_serialization = Mock(side_effect=lambda obj: dict(obj))
    return client


@pytest.fixture
def kube_store(api_client):
    store = KubernetesObjectStore(api_client)
    store._apis = {"apps": Mock(), "core": Mock(), "storage": Mock()}
    store.custom_objects_api = Mock()
    return store


class TestKubernetesObjectStore:
    @pytest.mark.asyncio
    async def test_get_typed_object(self, kube_store):
        apps = kube_store._apis["apps"]
        apps.read_namespaced_daemon_set = AsyncMock(
            return_value={"metadata": {"name": "example-node"}}
        )

        obj = await kube_store.get(DAEMON_SET)

        apps.read_namespaced_daemon_set.assert_awaited_once_with(
            name="example-node", namespace="storage"
        )
        assert obj["kind"] == "DaemonSet"
        assert obj["apiVersion"] == "apps/v1"

    @pytest.mark.asyncio
    async def test_missing_object(self, kube_store):
        kube_store._apis["apps"].read_namespaced_daemon_set = AsyncMock(
            side_effect=ApiException(status=404, reason="Not Found")
        )

        assert await kube_store.get(DAEMON_SET) is None

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, kube_store):
        kube_store._apis["apps"].read_namespaced_daemon_set = AsyncMock(
            side_effect=ApiException(status=503, reason="Unavailable")
        )

        with pytest.raises(TransientStoreError):
            await kube_store.get(DAEMON_SET)

    @pytest.mark.asyncio
    async def test_stale_update_is_conflict(self, kube_store):
        kube_store._apis["apps"].replace_namespaced_daemon_set = AsyncMock(
            side_effect=ApiException(status=409, reason="Conflict")
        )
        obj = {
            "kind": "DaemonSet",
            "metadata": {"name": "example-node", "namespace": "storage", "resourceVersion": "1"},
        }

        with pytest.raises(ConflictError):
            await kube_store.update(obj)

    @pytest.mark.asyncio
    async def test_update_requires_resource_version(self, kube_store):
        with pytest.raises(ValueError):
            await kube_store.update(
                {"kind": "DaemonSet", "metadata": {"name": "x", "namespace": "y"}}
            )

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, kube_store):
        kube_store._apis["apps"].delete_namespaced_daemon_set = AsyncMock(
            side_effect=ApiException(status=404, reason="Not Found")
        )

        await kube_store.delete(DAEMON_SET)

    @pytest.mark.asyncio
    async def test_cluster_scoped_kinds(self, kube_store):
        storage = kube_store._apis["storage"]
        storage.list_storage_class = AsyncMock(
            return_value=Mock(items=[{"metadata": {"name": "fast"}}])
        )

        items = await kube_store.list("StorageClass", label_selector="a=b")

        storage.list_storage_class.assert_awaited_once_with(label_selector="a=b")
        assert items[0]["kind"] == "StorageClass"

    @pytest.mark.asyncio
    async def test_pods_of_all_namespaces(self, kube_store):
        core = kube_store._apis["core"]
        core.list_pod_for_all_namespaces = AsyncMock(return_value=Mock(items=[]))

        await kube_store.list("Pod", field_selector="spec.nodeName=node-1")

        core.list_pod_for_all_namespaces.assert_awaited_once_with(
            field_selector="spec.nodeName=node-1"
        )

    @pytest.mark.asyncio
    async def test_status_is_merge_patched(self, kube_store):
        custom = kube_store.custom_objects_api
        custom.patch_namespaced_custom_object_status = AsyncMock(return_value={})

        await kube_store.patch_status(
            Identity("CSIDriverDeployment", "storage", "example"),
            {"observedGeneration": 2},
        )

        kwargs = custom.patch_namespaced_custom_object_status.await_args.kwargs
        assert kwargs["plural"] == "csidriverdeployments"
        assert kwargs["body"] == {"status": {"observedGeneration": 2}}
        assert kwargs["_content_type"] == "application/merge-patch+json"


class TestKubernetesNodeDrainer:
    @pytest.fixture
    def kube_drainer(self, api_client, store):
        drainer = KubernetesNodeDrainer(api_client, store, poll_interval=0.01)
        drainer.core_v1_api = Mock()
        return drainer

    @pytest.mark.asyncio
    async def test_cordon(self, kube_drainer):
        kube_drainer.core_v1_api.patch_node = AsyncMock()

        await kube_drainer.cordon("node-1")

        kube_drainer.core_v1_api.patch_node.assert_awaited_once_with(
            name="node-1", body={"spec": {"unschedulable": True}}
        )

    @pytest.mark.asyncio
    async def test_evicted_pod_is_gone(self, kube_drainer, store):
        kube_drainer.core_v1_api.create_namespaced_pod_eviction = AsyncMock()
        pod = workload_pod("app", "node-1", "csi.example.com")

        assert await kube_drainer.evict(pod, timeout=0.1) is True

    @pytest.mark.asyncio
    async def test_budget_blocks_eviction(self, kube_drainer, store):
        kube_drainer.core_v1_api.create_namespaced_pod_eviction = AsyncMock(
            side_effect=ApiException(status=429, reason="Too Many Requests")
        )
        pod = store.put(workload_pod("app", "node-1", "csi.example.com"))

        assert await kube_drainer.evict(pod, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_pod_that_stays_is_not_evicted(self, kube_drainer, store):
        kube_drainer.core_v1_api.create_namespaced_pod_eviction = AsyncMock()
        pod = store.put(workload_pod("app", "node-1", "csi.example.com"))

        assert await kube_drainer.evict(pod, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_pods_using_driver_through_claims(self, kube_drainer, store):
        store.put(
            {
                "kind": "PersistentVolumeClaim",
                "metadata": {"name": "data", "namespace": "apps"},
                "spec": {"volumeName": "pv-1"},
            }
        )
        store.put(
            {
                "kind": "PersistentVolume",
                "metadata": {"name": "pv-1"},
                "spec": {"csi": {"driver": "csi.example.com"}},
            }
        )
        pod = workload_pod("app", "node-1", "csi.example.com")
        pod["spec"]["volumes"] = [
            {"name": "data", "persistentVolumeClaim": {"claimName": "data"}}
        ]
        store.put(pod)

        pods = await kube_drainer.driver_pods("node-1", "csi.example.com")

        assert [p["metadata"]["name"] for p in pods] == ["app"]
        assert await kube_drainer.driver_pods("node-1", "csi.other.com") == []
