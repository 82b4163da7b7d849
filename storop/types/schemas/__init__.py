from .operator_spec import OperatorSpecSchema, SecretReferenceSchema
from .csidriverdeployment_spec import CSIDriverDeploymentSpecSchema
from .provisioner_spec import (
    EFSProvisionerSpecSchema,
    ManilaProvisionerSpecSchema,
    CephFSProvisionerSpecSchema,
    SnapshotControllerSpecSchema,
    StorageClassDevicesSchema,
    LocalStorageProviderSpecSchema,
)
from .status import (
    GenerationHistorySchema,
    NodeRolloutStateSchema,
    NodeRolloutSchema,
    StorageStatusSchema,
)
from .ledger import ChildResourceRecordSchema

__all__ = [
    "OperatorSpecSchema",
    "SecretReferenceSchema",
    "CSIDriverDeploymentSpecSchema",
    "EFSProvisionerSpecSchema",
    "ManilaProvisionerSpecSchema",
    "CephFSProvisionerSpecSchema",
    "SnapshotControllerSpecSchema",
    "StorageClassDevicesSchema",
    "LocalStorageProviderSpecSchema",
    "GenerationHistorySchema",
    "NodeRolloutStateSchema",
    "NodeRolloutSchema",
    "StorageStatusSchema",
    "ChildResourceRecordSchema",
]
