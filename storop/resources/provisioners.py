"""Resources of the provisioner kinds that run a single workload.

Each of them produces a Deployment (or a DaemonSet for local storage) and
the StorageClasses served by it. StorageClasses that already exist and are
not labeled as ours are adopted read-only by the diff/apply engine.
"""
from logging import Logger
from typing import List, Optional

import yaml
from marshmallow import ValidationError

from storop.engine.synthesizer import apply_node_selector
from storop.resources.base import BaseResource
from storop.types.base import BaseSchema, JSON
from storop.types.models import ProvisionerResources, SecretReference
from storop.types.schemas import (
    CephFSProvisionerSpecSchema,
    EFSProvisionerSpecSchema,
    LocalStorageProviderSpecSchema,
    ManilaProvisionerSpecSchema,
    SnapshotControllerSpecSchema,
)
from storop.types.settings import Settings
from storop.utils.errors import InvalidSpecError


class ProvisionerResource(BaseResource):
    """Base of the provisioner resources."""

    SCHEMA: BaseSchema = None
    CONTAINER_NAME: str = None
    CHILD_KINDS = ("Deployment", "StorageClass")

    @classmethod
    def from_body(
        cls, body: JSON, conf: Settings = None, logger: Logger = None
    ) -> "ProvisionerResource":
        metadata = body["metadata"]
        try:
            spec = cls.SCHEMA.load(body.get("spec") or {})
        except ValidationError as ex:
            raise InvalidSpecError(f"Invalid {cls.KIND} spec: {ex.messages}") from ex
        resource = cls(metadata["name"], metadata.get("namespace"), body, conf, logger)
        resource.spec = spec
        return resource

    @property
    def deployment_name(self) -> str:
        return ProvisionerResources.deployment_name(self.name)

    def container(self, image: str, **fields) -> JSON:
        container = {"name": self.CONTAINER_NAME, "image": image}
        pull_policy = self.spec.get("image_pull_policy")
        if pull_policy:
            container["imagePullPolicy"] = pull_policy
        container.update({k: v for k, v in fields.items() if v})
        return container

    def secret_namespace(self, secret: Optional[SecretReference]) -> str:
        return (secret.namespace if secret else None) or self.namespace

    def prepare_deployment(self, containers: List[JSON], pod_spec: JSON = None) -> JSON:
        pod_labels = self.labels.storop_label_selectors().as_dict()
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self.prepare_metadata(self.deployment_name),
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": dict(pod_labels)},
                "strategy": {"type": "Recreate"},
                "template": {
                    "metadata": {"labels": self.labels.as_dict()},
                    "spec": {**(pod_spec or {}), "containers": containers},
                },
            },
        }

    def prepare_storage_class(
        self,
        name: str,
        provisioner: str,
        parameters: JSON = None,
        volume_binding_mode: str = None,
    ) -> JSON:
        storage_class = {
            "apiVersion": "storage.k8s.io/v1",
            "kind": "StorageClass",
            "metadata": self.prepare_metadata(name, namespaced=False),
            "provisioner": provisioner,
            "reclaimPolicy": "Delete",
        }
        if parameters:
            storage_class["parameters"] = parameters
        if volume_binding_mode:
            storage_class["volumeBindingMode"] = volume_binding_mode
        return storage_class


class EFSProvisioner(ProvisionerResource):
    KIND = "EFSProvisioner"
    COMPONENT_TYPE = "efs-provisioner"
    SCHEMA = EFSProvisionerSpecSchema()
    CONTAINER_NAME = "efs-provisioner"
    PROVISIONER = "openshift.org/aws-efs"

    def build_children(self) -> List[JSON]:
        spec = self.spec
        env = [
            {"name": "FILE_SYSTEM_ID", "value": spec.fsid},
            {"name": "PROVISIONER_NAME", "value": self.PROVISIONER},
        ]
        if spec.base_path:
            env.append({"name": "BASE_PATH", "value": spec.base_path})
        env_from = None
        if spec.aws_secrets:
            env_from = [{"secretRef": {"name": spec.aws_secrets.name}}]
        pod_spec = {}
        if spec.supplemental_group is not None:
            pod_spec["securityContext"] = {
                "supplementalGroups": [spec.supplemental_group]
            }
        container = self.container(
            self.image_or(self.conf.efs_provisioner_image, spec.provisioner_image),
            env=env,
            envFrom=env_from,
        )
        return [
            self.prepare_deployment([container], pod_spec),
            self.prepare_storage_class(spec.storage_class_name, self.PROVISIONER),
        ]


class ManilaProvisioner(ProvisionerResource):
    KIND = "ManilaProvisioner"
    COMPONENT_TYPE = "manila-provisioner"
    SCHEMA = ManilaProvisionerSpecSchema()
    CONTAINER_NAME = "manila-provisioner"
    PROVISIONER = "externalstorage.k8s.io/manila"

    def build_children(self) -> List[JSON]:
        spec = self.spec
        secrets = spec.openstack_secrets
        container = self.container(
            self.image_or(self.conf.manila_provisioner_image, spec.provisioner_image),
            args=[f"--provisioner={self.PROVISIONER}"],
            envFrom=[{"secretRef": {"name": secrets.name}}],
        )
        parameters = {
            "osSecretName": secrets.name,
            "osSecretNamespace": self.secret_namespace(secrets),
        }
        return [
            self.prepare_deployment([container]),
            self.prepare_storage_class(
                spec.storage_class_name, self.PROVISIONER, parameters
            ),
        ]


class CephFSProvisioner(ProvisionerResource):
    KIND = "CephFSProvisioner"
    COMPONENT_TYPE = "cephfs-provisioner"
    SCHEMA = CephFSProvisionerSpecSchema()
    CONTAINER_NAME = "cephfs-provisioner"
    PROVISIONER = "ceph.com/cephfs"

    DEFAULT_CLAIM_ROOT = "/volumes/kubernetes"
    DEFAULT_CLUSTER = "ceph"

    def build_children(self) -> List[JSON]:
        spec = self.spec
        args = ["-id", self.name]
        if spec.enable_quota:
            args.append("-enable-quota")
        env = [{"name": "PROVISIONER_NAME", "value": self.PROVISIONER}]
        if spec.created_secrets_namespace:
            env.append(
                {
                    "name": "PROVISIONER_SECRET_NAMESPACE",
                    "value": spec.created_secrets_namespace,
                }
            )
        container = self.container(
            self.image_or(self.conf.cephfs_provisioner_image, spec.image_pull_spec),
            args=args,
            env=env,
        )
        parameters = {
            "monitors": ",".join(spec.monitors),
            "adminId": "admin",
            "adminSecretName": spec.cephfs_secrets.name,
            "adminSecretNamespace": self.secret_namespace(spec.cephfs_secrets),
            "claimRoot": spec.base_path or self.DEFAULT_CLAIM_ROOT,
            "cluster": spec.cluster_name or self.DEFAULT_CLUSTER,
            "deterministicNames": "true",
            "enableQuota": "true" if spec.enable_quota else "false",
        }
        return [
            self.prepare_deployment([container]),
            self.prepare_storage_class(
                spec.storage_class_name, self.PROVISIONER, parameters
            ),
        ]


class SnapshotController(ProvisionerResource):
    KIND = "SnapshotController"
    COMPONENT_TYPE = "snapshot-controller"
    SCHEMA = SnapshotControllerSpecSchema()
    CONTAINER_NAME = "snapshot-controller"
    CHILD_KINDS = ("Deployment",)

    #: Informational only, no RBAC objects are created for the group
    GROUP_ANNOTATION = "storop.io/snapshot-group"

    def build_children(self) -> List[JSON]:
        spec = self.spec
        controller = self.container(
            self.image_or(self.conf.snapshot_controller_image, spec.image_pull_spec)
        )
        provisioner = self.container(self.conf.snapshot_provisioner_image)
        provisioner["name"] = "snapshot-provisioner"
        deployment = self.prepare_deployment([controller, provisioner])
        if spec.group:
            deployment["metadata"]["annotations"] = {self.GROUP_ANNOTATION: spec.group}
        return [deployment]


class LocalStorageProvider(ProvisionerResource):
    KIND = "LocalStorageProvider"
    COMPONENT_TYPE = "local-storage-provisioner"
    SCHEMA = LocalStorageProviderSpecSchema()
    CONTAINER_NAME = "local-provisioner"
    CHILD_KINDS = ("ConfigMap", "DaemonSet", "StorageClass")

    PROVISIONER = "kubernetes.io/no-provisioner"
    HOST_DIR = "/mnt/local-storage"
    CONFIG_DIR = "/etc/provisioner/config"

    def storage_class_map(self) -> JSON:
        return {
            group.storage_class_name: {
                "hostDir": f"{self.HOST_DIR}/{group.storage_class_name}",
                "mountDir": f"{self.HOST_DIR}/{group.storage_class_name}",
            }
            for group in self.spec.storage_class_devices
        }

    def devices(self) -> JSON:
        return {
            group.storage_class_name: {
                "deviceNames": list(group.device_names or []),
                "deviceStableNames": list(group.device_stable_names or []),
            }
            for group in self.spec.storage_class_devices
        }

    def build_children(self) -> List[JSON]:
        spec = self.spec
        names = [g.storage_class_name for g in spec.storage_class_devices]
        if len(set(names)) != len(names):
            raise InvalidSpecError("storageClassDevices must use distinct storage classes")

        config_map_name = ProvisionerResources.config_map_name(self.name)
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self.prepare_metadata(config_map_name),
            "data": {
                "storageClassMap": yaml.safe_dump(
                    self.storage_class_map(), default_flow_style=False, sort_keys=True
                ),
                "devices": yaml.safe_dump(
                    self.devices(), default_flow_style=False, sort_keys=True
                ),
            },
        }

        container = self.container(
            self.image_or(self.conf.local_provisioner_image, spec.image_pull_spec),
            env=[
                {
                    "name": "MY_NODE_NAME",
                    "valueFrom": {"fieldRef": {"fieldPath": "spec.nodeName"}},
                }
            ],
            securityContext={"privileged": True},
            volumeMounts=[
                {"name": "provisioner-config", "mountPath": self.CONFIG_DIR, "readOnly": True},
                {"name": "local-storage", "mountPath": self.HOST_DIR, "mountPropagation": "HostToContainer"},
                {"name": "dev", "mountPath": "/dev"},
            ],
        )
        pod_labels = self.labels.storop_label_selectors().as_dict()
        template = {
            "metadata": {"labels": self.labels.as_dict()},
            "spec": {
                "containers": [container],
                "volumes": [
                    {"name": "provisioner-config", "configMap": {"name": config_map_name}},
                    {"name": "local-storage", "hostPath": {"path": self.HOST_DIR}},
                    {"name": "dev", "hostPath": {"path": "/dev"}},
                ],
            },
        }
        apply_node_selector(template, spec.node_selector)
        daemon_set = {
            "apiVersion": "apps/v1",
            "kind": "DaemonSet",
            "metadata": self.prepare_metadata(
                ProvisionerResources.daemon_set_name(self.name)
            ),
            "spec": {
                "selector": {"matchLabels": dict(pod_labels)},
                "template": template,
            },
        }
        storage_classes = [
            self.prepare_storage_class(
                name, self.PROVISIONER, volume_binding_mode="WaitForFirstConsumer"
            )
            for name in names
        ]
        return [config_map, daemon_set, *storage_classes]
