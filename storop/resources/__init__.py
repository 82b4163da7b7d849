from .base import BaseResource
from .csidriverdeployment import CSIDriverDeployment
from .provisioners import (
    ProvisionerResource,
    EFSProvisioner,
    ManilaProvisioner,
    CephFSProvisioner,
    SnapshotController,
    LocalStorageProvider,
)

#: Resource classes by kind
KINDS = {
    resource.KIND: resource
    for resource in (
        CSIDriverDeployment,
        EFSProvisioner,
        ManilaProvisioner,
        CephFSProvisioner,
        SnapshotController,
        LocalStorageProvider,
    )
}

__all__ = [
    "BaseResource",
    "CSIDriverDeployment",
    "ProvisionerResource",
    "EFSProvisioner",
    "ManilaProvisioner",
    "CephFSProvisioner",
    "SnapshotController",
    "LocalStorageProvider",
    "KINDS",
]
