"""Desired state of the workloads running a CSI driver.

`synthesize` turns a CSIDriverDeploymentSpec into the manifests of the node
DaemonSet and the optional controller Deployment. It performs no I/O and
never mutates its input.
"""
import copy
import posixpath
from typing import List, Optional, Tuple

from storop.common.models.labels import Labels
from storop.types.base import JSON
from storop.types.models import CSIDriverDeploymentResources, CSIDriverDeploymentSpec
from storop.types.settings import Settings
from storop.utils.errors import InvalidSpecError

KIND = "CSIDriverDeployment"

#: Containers, volumes and mounts named with this prefix belong to the operator
RESERVED_PREFIX = "storop-"

REGISTRAR_CONTAINER = RESERVED_PREFIX + "driver-registrar"
LIVENESS_CONTAINER = RESERVED_PREFIX + "liveness-probe"
PROVISIONER_CONTAINER = RESERVED_PREFIX + "csi-provisioner"
ATTACHER_CONTAINER = RESERVED_PREFIX + "csi-attacher"

PLUGIN_DIR_VOLUME = RESERVED_PREFIX + "plugin-dir"
REGISTRATION_DIR_VOLUME = RESERVED_PREFIX + "registration-dir"
SOCKET_DIR_VOLUME = RESERVED_PREFIX + "socket-dir"

SIDECAR_SOCKET_DIR = "/csi"
SIDECAR_REGISTRATION_DIR = "/registration"

NODE_COMPONENT = "node"
CONTROLLER_COMPONENT = "controller"


def _reserved(name: Optional[str]) -> bool:
    return bool(name) and name.startswith(RESERVED_PREFIX)


def validate_spec(spec: CSIDriverDeploymentSpec) -> None:
    if not spec.driver_name:
        raise InvalidSpecError("driverName must not be empty")
    socket = spec.driver_socket
    if not socket:
        raise InvalidSpecError("driverSocket must not be empty")
    if not posixpath.isabs(socket):
        raise InvalidSpecError(f"driverSocket {socket!r} must be an absolute path")
    if socket.endswith("/") or not posixpath.basename(socket):
        raise InvalidSpecError(f"driverSocket {socket!r} must name a file")
    if posixpath.dirname(posixpath.normpath(socket)) == "/":
        raise InvalidSpecError(f"driverSocket {socket!r} must not be in the root directory")


def pod_template_spec(template: Optional[JSON]) -> JSON:
    """Accepts both a PodTemplate (with `template`) and a bare PodTemplateSpec."""
    template = copy.deepcopy(template or {})
    if "template" in template and "spec" not in template:
        template = template["template"] or {}
    template.setdefault("metadata", {})
    template["metadata"] = dict(template["metadata"] or {})
    template["spec"] = dict(template.get("spec") or {})
    return template


def strip_reserved(template: JSON) -> JSON:
    """Removes everything a previous injection added, so injection can be repeated."""
    spec = template["spec"]
    containers = []
    for container in spec.get("containers") or []:
        if _reserved(container.get("name")):
            continue
        container = dict(container)
        mounts = [
            m for m in container.get("volumeMounts") or [] if not _reserved(m.get("name"))
        ]
        if mounts:
            container["volumeMounts"] = mounts
        else:
            container.pop("volumeMounts", None)
        containers.append(container)
    spec["containers"] = containers
    volumes = [v for v in spec.get("volumes") or [] if not _reserved(v.get("name"))]
    if volumes:
        spec["volumes"] = volumes
    else:
        spec.pop("volumes", None)
    return template


def _driver_container(template: JSON, what: str) -> JSON:
    containers = template["spec"]["containers"]
    if not containers:
        raise InvalidSpecError(f"{what} must contain a container with the CSI driver")
    return containers[0]


def _mount_socket_dir(container: JSON, volume_name: str, socket_dir: str) -> None:
    mounts = container.setdefault("volumeMounts", [])
    for mount in mounts:
        if posixpath.normpath(mount.get("mountPath", "")) == socket_dir:
            raise InvalidSpecError(
                f"Container {container.get('name')} already mounts volume "
                f"{mount.get('name')} at the driver socket directory {socket_dir}"
            )
    mounts.append({"name": volume_name, "mountPath": socket_dir})


def _implies(term: JSON, other: JSON) -> bool:
    """True when every requirement of `other` is already part of `term`."""
    return all(
        requirement in (term.get(field) or [])
        for field in ("matchExpressions", "matchFields")
        for requirement in other.get(field) or []
    )


def combine_node_selector_terms(
    existing: List[JSON], required: List[JSON]
) -> List[JSON]:
    """Cross product of two term lists, so that both selectors must match.

    Terms that already carry one of the required terms are kept as they are,
    so combining a result with the same requirement again changes nothing.
    """
    if not existing:
        return copy.deepcopy(required)
    if not required:
        return copy.deepcopy(existing)
    if all(any(_implies(a, b) for b in required) for a in existing):
        return copy.deepcopy(existing)
    terms = []
    for a in existing:
        for b in required:
            term = {}
            for field in ("matchExpressions", "matchFields"):
                merged = list(a.get(field) or [])
                merged.extend(r for r in b.get(field) or [] if r not in merged)
                if merged:
                    term[field] = copy.deepcopy(merged)
            if term not in terms:
                terms.append(term)
    return terms


def apply_node_selector(template: JSON, node_selector: Optional[JSON]) -> None:
    terms = (node_selector or {}).get("nodeSelectorTerms") or []
    if not terms:
        return
    spec = template["spec"]
    affinity = spec.setdefault("affinity", {})
    node_affinity = affinity.setdefault("nodeAffinity", {})
    required = node_affinity.setdefault(
        "requiredDuringSchedulingIgnoredDuringExecution", {}
    )
    required["nodeSelectorTerms"] = combine_node_selector_terms(
        required.get("nodeSelectorTerms") or [], terms
    )


def selector_labels(name: str, namespace: str, component: str) -> JSON:
    return (
        Labels()
        .include_storop_kind(KIND)
        .include_storop_cluster(name)
        .include_storop_namespace(namespace)
        .include_storop_component_type(component)
        .as_dict()
    )


def _label_template(template: JSON, labels: JSON) -> None:
    metadata = template["metadata"]
    metadata["labels"] = {**(metadata.get("labels") or {}), **labels}


def _socket_parts(spec: CSIDriverDeploymentSpec) -> Tuple[str, str]:
    socket = posixpath.normpath(spec.driver_socket)
    return posixpath.dirname(socket), posixpath.basename(socket)


def build_node_template(
    spec: CSIDriverDeploymentSpec, settings: Settings
) -> JSON:
    template = strip_reserved(pod_template_spec(spec.node_template))
    driver = _driver_container(template, "nodeTemplate")
    socket_dir, socket_file = _socket_parts(spec)
    plugin_dir = CSIDriverDeploymentResources.plugin_dir(
        settings.kubelet_dir, spec.driver_name
    )
    registration_dir = CSIDriverDeploymentResources.registration_dir(
        settings.kubelet_dir
    )
    _mount_socket_dir(driver, PLUGIN_DIR_VOLUME, socket_dir)

    if not driver.get("livenessProbe"):
        driver["livenessProbe"] = {
            "httpGet": {"path": "/healthz", "port": settings.liveness_probe_port},
            "initialDelaySeconds": 10,
            "timeoutSeconds": 3,
            "periodSeconds": 10,
            "failureThreshold": 5,
        }
    # The liveness sidecar answers /healthz only while the driver socket accepts
    # connections, so a Ready plugin pod means a serving socket.
    if not driver.get("readinessProbe"):
        driver["readinessProbe"] = {
            "httpGet": {"path": "/healthz", "port": settings.liveness_probe_port},
            "initialDelaySeconds": 2,
            "timeoutSeconds": 3,
            "periodSeconds": 5,
            "failureThreshold": 3,
        }

    sidecar_socket = f"{SIDECAR_SOCKET_DIR}/{socket_file}"
    template["spec"]["containers"].extend(
        [
            {
                "name": REGISTRAR_CONTAINER,
                "image": settings.driver_registrar_image,
                "args": [
                    "--v=5",
                    f"--csi-address={sidecar_socket}",
                    f"--kubelet-registration-path={plugin_dir}{socket_file}",
                ],
                "volumeMounts": [
                    {"name": PLUGIN_DIR_VOLUME, "mountPath": SIDECAR_SOCKET_DIR},
                    {
                        "name": REGISTRATION_DIR_VOLUME,
                        "mountPath": SIDECAR_REGISTRATION_DIR,
                    },
                ],
            },
            {
                "name": LIVENESS_CONTAINER,
                "image": settings.liveness_probe_image,
                "args": [
                    f"--csi-address={sidecar_socket}",
                    f"--health-port={settings.liveness_probe_port}",
                ],
                "volumeMounts": [
                    {"name": PLUGIN_DIR_VOLUME, "mountPath": SIDECAR_SOCKET_DIR}
                ],
            },
        ]
    )
    template["spec"].setdefault("volumes", []).extend(
        [
            {
                "name": PLUGIN_DIR_VOLUME,
                "hostPath": {"path": plugin_dir, "type": "DirectoryOrCreate"},
            },
            {
                "name": REGISTRATION_DIR_VOLUME,
                "hostPath": {"path": registration_dir, "type": "Directory"},
            },
        ]
    )
    apply_node_selector(template, spec.node_selector)
    return template


def build_controller_template(
    spec: CSIDriverDeploymentSpec, settings: Settings
) -> JSON:
    template = strip_reserved(pod_template_spec(spec.controller_template))
    driver = _driver_container(template, "controllerTemplate")
    socket_dir, socket_file = _socket_parts(spec)
    _mount_socket_dir(driver, SOCKET_DIR_VOLUME, socket_dir)

    sidecar_socket = f"{SIDECAR_SOCKET_DIR}/{socket_file}"
    mounts = [{"name": SOCKET_DIR_VOLUME, "mountPath": SIDECAR_SOCKET_DIR}]
    template["spec"]["containers"].extend(
        [
            {
                "name": PROVISIONER_CONTAINER,
                "image": settings.csi_provisioner_image,
                "args": ["--v=5", f"--csi-address={sidecar_socket}"],
                "volumeMounts": copy.deepcopy(mounts),
            },
            {
                "name": ATTACHER_CONTAINER,
                "image": settings.csi_attacher_image,
                "args": ["--v=5", f"--csi-address={sidecar_socket}"],
                "volumeMounts": copy.deepcopy(mounts),
            },
        ]
    )
    template["spec"].setdefault("volumes", []).append(
        {"name": SOCKET_DIR_VOLUME, "emptyDir": {}}
    )
    return template


def synthesize(
    name: str,
    namespace: str,
    spec: CSIDriverDeploymentSpec,
    settings: Settings = None,
) -> Tuple[JSON, Optional[JSON]]:
    """Returns the node DaemonSet and, when a controller template is set, the
    controller Deployment for a CSIDriverDeployment.

    Raises:
        InvalidSpecError: the spec cannot be turned into workloads.
    """
    settings = settings or Settings()
    validate_spec(spec)

    node_labels = selector_labels(name, namespace, NODE_COMPONENT)
    node_template = build_node_template(spec, settings)
    _label_template(node_template, node_labels)
    daemon_set = {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": {
            "name": CSIDriverDeploymentResources.node_daemon_set_name(name),
            "namespace": namespace,
            "labels": dict(node_labels),
        },
        "spec": {
            "selector": {"matchLabels": dict(node_labels)},
            # Pods are replaced node by node by the rollout coordinator
            "updateStrategy": {"type": "OnDelete"},
            "template": node_template,
        },
    }

    deployment = None
    if spec.controller_template:
        controller_labels = selector_labels(name, namespace, CONTROLLER_COMPONENT)
        controller_template = build_controller_template(spec, settings)
        _label_template(controller_template, controller_labels)
        deployment = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": CSIDriverDeploymentResources.controller_deployment_name(name),
                "namespace": namespace,
                "labels": dict(controller_labels),
            },
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": dict(controller_labels)},
                "template": controller_template,
            },
        }
    return daemon_set, deployment
