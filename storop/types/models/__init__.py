from .operator_spec import OperatorSpec, SecretReference
from .csidriverdeployment_spec import CSIDriverDeploymentSpec
from .csidriverdeployment_resources import CSIDriverDeploymentResources
from .provisioner_spec import (
    EFSProvisionerSpec,
    ManilaProvisionerSpec,
    CephFSProvisionerSpec,
    SnapshotControllerSpec,
    StorageClassDevices,
    LocalStorageProviderSpec,
)
from .provisioner_resources import ProvisionerResources
from .status import GenerationHistory, NodeRolloutState, NodeRollout, StorageStatus
from .ledger import ChildResourceRecord

__all__ = [
    "OperatorSpec",
    "SecretReference",
    "CSIDriverDeploymentSpec",
    "CSIDriverDeploymentResources",
    "EFSProvisionerSpec",
    "ManilaProvisionerSpec",
    "CephFSProvisionerSpec",
    "SnapshotControllerSpec",
    "StorageClassDevices",
    "LocalStorageProviderSpec",
    "ProvisionerResources",
    "GenerationHistory",
    "NodeRolloutState",
    "NodeRollout",
    "StorageStatus",
    "ChildResourceRecord",
]
