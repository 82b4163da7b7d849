from typing import Optional, List, Dict, Any
from storop.types.base import BaseModel
from storop.types.models.operator_spec import OperatorSpec, SecretReference


class EFSProvisionerSpec(BaseModel):
    provisioner_image: Optional[str]
    storage_class_name: str
    aws_secrets: Optional[SecretReference]
    fsid: str
    base_path: Optional[str]
    supplemental_group: Optional[int]


class ManilaProvisionerSpec(BaseModel):
    provisioner_image: Optional[str]
    storage_class_name: str
    openstack_secrets: SecretReference


class CephFSProvisionerSpec(OperatorSpec):
    storage_class_name: str
    cephfs_secrets: SecretReference
    cluster_name: Optional[str]
    monitors: List[str]
    base_path: Optional[str]
    created_secrets_namespace: Optional[str]
    enable_quota: Optional[bool]


class SnapshotControllerSpec(OperatorSpec):
    #: User group allowed to manage snapshots; informational only.
    group: Optional[str]


class StorageClassDevices(BaseModel):
    storage_class_name: str
    device_names: Optional[List[str]]
    device_stable_names: Optional[List[str]]


class LocalStorageProviderSpec(OperatorSpec):
    node_selector: Optional[Dict[str, Any]]
    storage_class_devices: List[StorageClassDevices]
