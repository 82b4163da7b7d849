import os
from typing import Any

_TRUE, _FALSE = {"True", "true", "yes", "1"}, {"False", "false", "no", "0"}


def _getenv(name: str, *default: Any) -> Any:
    try:
        v = os.environ[name]
        if v in _TRUE:
            return True
        elif v in _FALSE:
            return False
        else:
            return v
    except KeyError:
        pass
    if default:
        return default[0]
    raise KeyError(name)


# ------------------------------------------------
# ---- Defaults and environment variables ----
# ------------------------------------------------

#: Namespace the operator runs in; the generation ledger lives here
OPERATOR_NAMESPACE = _getenv("OPERATOR_NAMESPACE", "storop-system")

#: Name of the ConfigMap backing the generation ledger
LEDGER_CONFIG_MAP_NAME = _getenv("LEDGER_CONFIG_MAP_NAME", "storop-generation-ledger")

#: Number of reconciliation workers pulling keys from the work queue
WORKER_COUNT = int(_getenv("WORKER_COUNT", 4))

#: Seconds between periodic resyncs of every resource
RESYNC_INTERVAL_SECONDS = float(_getenv("RESYNC_INTERVAL_SECONDS", 60.0))

#: Attempts per child write before the reconciliation is reported failed
APPLY_RETRY_BUDGET = int(_getenv("APPLY_RETRY_BUDGET", 5))

#: Base and cap (seconds) of the exponential backoff between write attempts
APPLY_BACKOFF_BASE_SECONDS = float(_getenv("APPLY_BACKOFF_BASE_SECONDS", 0.5))
APPLY_BACKOFF_MAX_SECONDS = float(_getenv("APPLY_BACKOFF_MAX_SECONDS", 10.0))

#: Base and cap (seconds) of the delay before a failed key is dispatched again
REQUEUE_BASE_DELAY_SECONDS = float(_getenv("REQUEUE_BASE_DELAY_SECONDS", 5.0))
REQUEUE_MAX_DELAY_SECONDS = float(_getenv("REQUEUE_MAX_DELAY_SECONDS", 300.0))

#: Nodes allowed to leave Pending at the same time during a node rollout
ROLLOUT_MAX_CONCURRENT_NODES = int(_getenv("ROLLOUT_MAX_CONCURRENT_NODES", 1))

#: Seconds to wait for pods using the driver to be evicted from a node
ROLLOUT_DRAIN_TIMEOUT_SECONDS = float(_getenv("ROLLOUT_DRAIN_TIMEOUT_SECONDS", 300.0))

#: Seconds to wait for a replaced node plugin to report its socket healthy
ROLLOUT_VERIFY_TIMEOUT_SECONDS = float(
    _getenv("ROLLOUT_VERIFY_TIMEOUT_SECONDS", 180.0)
)

#: Seconds between polls while draining or verifying a node
ROLLOUT_POLL_INTERVAL_SECONDS = float(_getenv("ROLLOUT_POLL_INTERVAL_SECONDS", 5.0))

#: Kubelet root directory on the nodes
KUBELET_DIR = _getenv("KUBELET_DIR", "/var/lib/kubelet")

#: Port the liveness probe sidecar listens on
LIVENESS_PROBE_PORT = int(_getenv("LIVENESS_PROBE_PORT", 9808))

# Sidecar and provisioner images
DRIVER_REGISTRAR_IMAGE = _getenv(
    "DRIVER_REGISTRAR_IMAGE",
    "registry.k8s.io/sig-storage/csi-node-driver-registrar:v2.9.0",
)
LIVENESS_PROBE_IMAGE = _getenv(
    "LIVENESS_PROBE_IMAGE", "registry.k8s.io/sig-storage/livenessprobe:v2.11.0"
)
CSI_PROVISIONER_IMAGE = _getenv(
    "CSI_PROVISIONER_IMAGE", "registry.k8s.io/sig-storage/csi-provisioner:v3.6.0"
)
CSI_ATTACHER_IMAGE = _getenv(
    "CSI_ATTACHER_IMAGE", "registry.k8s.io/sig-storage/csi-attacher:v4.4.0"
)
EFS_PROVISIONER_IMAGE = _getenv(
    "EFS_PROVISIONER_IMAGE", "quay.io/external_storage/efs-provisioner:latest"
)
MANILA_PROVISIONER_IMAGE = _getenv(
    "MANILA_PROVISIONER_IMAGE", "docker.io/k8scloudprovider/manila-provisioner:latest"
)
CEPHFS_PROVISIONER_IMAGE = _getenv(
    "CEPHFS_PROVISIONER_IMAGE", "quay.io/external_storage/cephfs-provisioner:latest"
)
SNAPSHOT_CONTROLLER_IMAGE = _getenv(
    "SNAPSHOT_CONTROLLER_IMAGE", "quay.io/external_storage/snapshot-controller:latest"
)
SNAPSHOT_PROVISIONER_IMAGE = _getenv(
    "SNAPSHOT_PROVISIONER_IMAGE",
    "quay.io/external_storage/snapshot-provisioner:latest",
)
LOCAL_PROVISIONER_IMAGE = _getenv(
    "LOCAL_PROVISIONER_IMAGE",
    "registry.k8s.io/sig-storage/local-volume-provisioner:v2.5.0",
)


class Settings:
    """Operator settings"""

    operator_namespace: str = OPERATOR_NAMESPACE
    ledger_config_map_name: str = LEDGER_CONFIG_MAP_NAME
    worker_count: int = WORKER_COUNT
    resync_interval_seconds: float = RESYNC_INTERVAL_SECONDS
    apply_retry_budget: int = APPLY_RETRY_BUDGET
    apply_backoff_base_seconds: float = APPLY_BACKOFF_BASE_SECONDS
    apply_backoff_max_seconds: float = APPLY_BACKOFF_MAX_SECONDS
    requeue_base_delay_seconds: float = REQUEUE_BASE_DELAY_SECONDS
    requeue_max_delay_seconds: float = REQUEUE_MAX_DELAY_SECONDS
    rollout_max_concurrent_nodes: int = ROLLOUT_MAX_CONCURRENT_NODES
    rollout_drain_timeout_seconds: float = ROLLOUT_DRAIN_TIMEOUT_SECONDS
    rollout_verify_timeout_seconds: float = ROLLOUT_VERIFY_TIMEOUT_SECONDS
    rollout_poll_interval_seconds: float = ROLLOUT_POLL_INTERVAL_SECONDS
    kubelet_dir: str = KUBELET_DIR
    liveness_probe_port: int = LIVENESS_PROBE_PORT
    driver_registrar_image: str = DRIVER_REGISTRAR_IMAGE
    liveness_probe_image: str = LIVENESS_PROBE_IMAGE
    csi_provisioner_image: str = CSI_PROVISIONER_IMAGE
    csi_attacher_image: str = CSI_ATTACHER_IMAGE
    efs_provisioner_image: str = EFS_PROVISIONER_IMAGE
    manila_provisioner_image: str = MANILA_PROVISIONER_IMAGE
    cephfs_provisioner_image: str = CEPHFS_PROVISIONER_IMAGE
    snapshot_controller_image: str = SNAPSHOT_CONTROLLER_IMAGE
    snapshot_provisioner_image: str = SNAPSHOT_PROVISIONER_IMAGE
    local_provisioner_image: str = LOCAL_PROVISIONER_IMAGE

    def __init__(
        self,
        *args,
        operator_namespace: str = None,
        ledger_config_map_name: str = None,
        worker_count: int = None,
        resync_interval_seconds: float = None,
        apply_retry_budget: int = None,
        apply_backoff_base_seconds: float = None,
        apply_backoff_max_seconds: float = None,
        requeue_base_delay_seconds: float = None,
        requeue_max_delay_seconds: float = None,
        rollout_max_concurrent_nodes: int = None,
        rollout_drain_timeout_seconds: float = None,
        rollout_verify_timeout_seconds: float = None,
        rollout_poll_interval_seconds: float = None,
        kubelet_dir: str = None,
        liveness_probe_port: int = None,
        **images,
    ):
        if operator_namespace is not None:
            self.operator_namespace = operator_namespace

        if ledger_config_map_name is not None:
            self.ledger_config_map_name = ledger_config_map_name

        if worker_count is not None:
            self.worker_count = worker_count

        if resync_interval_seconds is not None:
            self.resync_interval_seconds = resync_interval_seconds

        if apply_retry_budget is not None:
            self.apply_retry_budget = apply_retry_budget

        if apply_backoff_base_seconds is not None:
            self.apply_backoff_base_seconds = apply_backoff_base_seconds

        if apply_backoff_max_seconds is not None:
            self.apply_backoff_max_seconds = apply_backoff_max_seconds

        if requeue_base_delay_seconds is not None:
            self.requeue_base_delay_seconds = requeue_base_delay_seconds

        if requeue_max_delay_seconds is not None:
            self.requeue_max_delay_seconds = requeue_max_delay_seconds

        if rollout_max_concurrent_nodes is not None:
            self.rollout_max_concurrent_nodes = rollout_max_concurrent_nodes

        if rollout_drain_timeout_seconds is not None:
            self.rollout_drain_timeout_seconds = rollout_drain_timeout_seconds

        if rollout_verify_timeout_seconds is not None:
            self.rollout_verify_timeout_seconds = rollout_verify_timeout_seconds

        if rollout_poll_interval_seconds is not None:
            self.rollout_poll_interval_seconds = rollout_poll_interval_seconds

        if kubelet_dir is not None:
            self.kubelet_dir = kubelet_dir

        if liveness_probe_port is not None:
            self.liveness_probe_port = liveness_probe_port

        # Image overrides, e.g. Settings(driver_registrar_image="my/registrar:v1")
        for key, value in images.items():
            if not key.endswith("_image"):
                raise TypeError(f"Unknown setting: {key}")
            if value is not None:
                setattr(self, key, value)
