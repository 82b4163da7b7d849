import asyncio
import logging
from typing import Dict, List, NamedTuple, Optional

import aiohttp
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    StorageV1Api,
    V1DeleteOptions,
)

from storop.store.base import Identity, ObjectStore
from storop.types.base import JSON
from storop.utils.errors import convert_api_exception, not_found_error

logger = logging.getLogger(__name__)

GROUP = "storage.openshift.io"
VERSION = "v1alpha1"


class TypedKind(NamedTuple):
    api: str
    resource: str
    api_version: str
    namespaced: bool = True


class CustomKind(NamedTuple):
    plural: str
    namespaced: bool = True


TYPED_KINDS: Dict[str, TypedKind] = {
    "DaemonSet": TypedKind("apps", "daemon_set", "apps/v1"),
    "Deployment": TypedKind("apps", "deployment", "apps/v1"),
    "StorageClass": TypedKind("storage", "storage_class", "storage.k8s.io/v1", False),
    "ConfigMap": TypedKind("core", "config_map", "v1"),
    "Secret": TypedKind("core", "secret", "v1"),
    "Pod": TypedKind("core", "pod", "v1"),
    "Node": TypedKind("core", "node", "v1", False),
    "PersistentVolume": TypedKind("core", "persistent_volume", "v1", False),
    "PersistentVolumeClaim": TypedKind("core", "persistent_volume_claim", "v1"),
}

CUSTOM_KINDS: Dict[str, CustomKind] = {
    "EFSProvisioner": CustomKind("efsprovisioners"),
    "ManilaProvisioner": CustomKind("manilaprovisioners"),
    "CephFSProvisioner": CustomKind("cephfsprovisioners"),
    "SnapshotController": CustomKind("snapshotcontrollers"),
    "LocalStorageProvider": CustomKind("localstorageproviders"),
    "CSIDriverDeployment": CustomKind("csidriverdeployments"),
}


class KubernetesObjectStore(ObjectStore):
    """ObjectStore backed by the kubernetes_asyncio typed and custom object APIs."""

    def __init__(self, api_client: ApiClient) -> None:
        self.api_client = api_client
        self._apis = {
            "apps": AppsV1Api(api_client),
            "core": CoreV1Api(api_client),
            "storage": StorageV1Api(api_client),
        }
        self.custom_objects_api = CustomObjectsApi(api_client)

    def _to_dict(self, kind: str, obj) -> JSON:
        data = self.api_client.sanitize_for_serialization(obj)
        if kind in TYPED_KINDS:
            data.setdefault("kind", kind)
            data.setdefault("apiVersion", TYPED_KINDS[kind].api_version)
        return data

    def _typed_method(self, kind: TypedKind, verb: str, all_namespaces: bool = False):
        api = self._apis[kind.api]
        if all_namespaces:
            return getattr(api, f"{verb}_{kind.resource}_for_all_namespaces")
        if kind.namespaced:
            return getattr(api, f"{verb}_namespaced_{kind.resource}")
        return getattr(api, f"{verb}_{kind.resource}")

    @staticmethod
    def _lookup(kind: str):
        if kind in TYPED_KINDS:
            return TYPED_KINDS[kind]
        if kind in CUSTOM_KINDS:
            return CUSTOM_KINDS[kind]
        raise ValueError(f"Unsupported kind: {kind}")

    async def _call(self, coro):
        try:
            return await coro
        except (ApiException, aiohttp.ClientError, asyncio.TimeoutError) as ex:
            raise convert_api_exception(ex) from ex

    async def get(self, identity: Identity) -> Optional[JSON]:
        kind = self._lookup(identity.kind)
        try:
            if isinstance(kind, TypedKind):
                method = self._typed_method(kind, "read")
                if kind.namespaced:
                    obj = await method(name=identity.name, namespace=identity.namespace)
                else:
                    obj = await method(name=identity.name)
                return self._to_dict(identity.kind, obj)
            return await self.custom_objects_api.get_namespaced_custom_object(
                group=GROUP,
                version=VERSION,
                namespace=identity.namespace,
                plural=kind.plural,
                name=identity.name,
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise convert_api_exception(ex) from ex
        except (aiohttp.ClientError, asyncio.TimeoutError) as ex:
            raise convert_api_exception(ex) from ex

    async def create(self, obj: JSON) -> JSON:
        kind_name = obj["kind"]
        kind = self._lookup(kind_name)
        namespace = obj["metadata"].get("namespace")
        if isinstance(kind, TypedKind):
            method = self._typed_method(kind, "create")
            if kind.namespaced:
                result = await self._call(method(namespace=namespace, body=obj))
            else:
                result = await self._call(method(body=obj))
            return self._to_dict(kind_name, result)
        return await self._call(
            self.custom_objects_api.create_namespaced_custom_object(
                group=GROUP,
                version=VERSION,
                namespace=namespace,
                plural=kind.plural,
                body=obj,
            )
        )

    async def update(self, obj: JSON) -> JSON:
        kind_name = obj["kind"]
        kind = self._lookup(kind_name)
        metadata = obj["metadata"]
        if not metadata.get("resourceVersion"):
            raise ValueError("update requires metadata.resourceVersion")
        name, namespace = metadata["name"], metadata.get("namespace")
        if isinstance(kind, TypedKind):
            method = self._typed_method(kind, "replace")
            if kind.namespaced:
                result = await self._call(
                    method(name=name, namespace=namespace, body=obj)
                )
            else:
                result = await self._call(method(name=name, body=obj))
            return self._to_dict(kind_name, result)
        return await self._call(
            self.custom_objects_api.replace_namespaced_custom_object(
                group=GROUP,
                version=VERSION,
                namespace=namespace,
                plural=kind.plural,
                name=name,
                body=obj,
            )
        )

    async def delete(self, identity: Identity) -> None:
        kind = self._lookup(identity.kind)
        try:
            if isinstance(kind, TypedKind):
                method = self._typed_method(kind, "delete")
                options = V1DeleteOptions(propagation_policy="Background")
                if kind.namespaced:
                    await method(
                        name=identity.name, namespace=identity.namespace, body=options
                    )
                else:
                    await method(name=identity.name, body=options)
            else:
                await self.custom_objects_api.delete_namespaced_custom_object(
                    group=GROUP,
                    version=VERSION,
                    namespace=identity.namespace,
                    plural=kind.plural,
                    name=identity.name,
                )
        except ApiException as ex:
            if not_found_error(ex):
                logger.debug(f"{identity} already deleted")
                return
            raise convert_api_exception(ex) from ex
        except (aiohttp.ClientError, asyncio.TimeoutError) as ex:
            raise convert_api_exception(ex) from ex

    async def list(
        self,
        kind: str,
        namespace: str = None,
        label_selector: str = None,
        field_selector: str = None,
    ) -> List[JSON]:
        spec = self._lookup(kind)
        selectors = {}
        if label_selector:
            selectors["label_selector"] = label_selector
        if field_selector:
            selectors["field_selector"] = field_selector
        if isinstance(spec, TypedKind):
            if spec.namespaced and namespace:
                method = self._typed_method(spec, "list")
                result = await self._call(method(namespace=namespace, **selectors))
            elif spec.namespaced:
                method = self._typed_method(spec, "list", all_namespaces=True)
                result = await self._call(method(**selectors))
            else:
                method = self._typed_method(spec, "list")
                result = await self._call(method(**selectors))
            return [self._to_dict(kind, item) for item in result.items]
        if namespace:
            result = await self._call(
                self.custom_objects_api.list_namespaced_custom_object(
                    group=GROUP,
                    version=VERSION,
                    namespace=namespace,
                    plural=spec.plural,
                    **selectors,
                )
            )
        else:
            result = await self._call(
                self.custom_objects_api.list_cluster_custom_object(
                    group=GROUP, version=VERSION, plural=spec.plural, **selectors
                )
            )
        return list(result.get("items", []))

    async def patch_status(self, identity: Identity, status: JSON) -> JSON:
        kind = self._lookup(identity.kind)
        if not isinstance(kind, CustomKind):
            raise ValueError(f"Status of {identity.kind} is not owned by the operator")
        try:
            return await self.custom_objects_api.patch_namespaced_custom_object_status(
                group=GROUP,
                version=VERSION,
                namespace=identity.namespace,
                plural=kind.plural,
                name=identity.name,
                body={"status": status},
                _content_type="application/merge-patch+json",
            )
        except ApiException as ex:
            if not_found_error(ex):
                return None
            raise convert_api_exception(ex) from ex
        except (aiohttp.ClientError, asyncio.TimeoutError) as ex:
            raise convert_api_exception(ex) from ex
