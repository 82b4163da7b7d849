from logging import Logger
from typing import List

from marshmallow import ValidationError

from storop.engine.synthesizer import synthesize
from storop.resources.base import BaseResource
from storop.store.base import Identity
from storop.types.base import JSON
from storop.types.models import CSIDriverDeploymentResources, CSIDriverDeploymentSpec
from storop.types.schemas import CSIDriverDeploymentSpecSchema
from storop.types.settings import Settings
from storop.utils.errors import InvalidSpecError


class CSIDriverDeployment(BaseResource):
    """CSI driver kubernetes resource."""

    KIND = "CSIDriverDeployment"
    COMPONENT_TYPE = "csi-driver"
    CHILD_KINDS = ("DaemonSet", "Deployment")

    ROLLING = CSIDriverDeploymentSpecSchema.ROLLING
    DRAIN = CSIDriverDeploymentSpecSchema.DRAIN

    spec: CSIDriverDeploymentSpec

    @classmethod
    def from_body(
        self, body: JSON, conf: Settings = None, logger: Logger = None
    ) -> "CSIDriverDeployment":
        metadata = body["metadata"]
        try:
            spec = CSIDriverDeploymentSpecSchema().load(body.get("spec") or {})
        except ValidationError as ex:
            raise InvalidSpecError(f"Invalid {self.KIND} spec: {ex.messages}") from ex
        resource = CSIDriverDeployment(
            metadata["name"], metadata.get("namespace"), body, conf, logger
        )
        resource.spec = spec
        return resource

    @property
    def driver_name(self) -> str:
        return self.spec.driver_name

    @property
    def update_strategy(self) -> str:
        """Explicit strategy, else Rolling only for drivers that tolerate losing the socket."""
        if self.spec.node_update_strategy:
            return self.spec.node_update_strategy
        return self.ROLLING if self.spec.socket_loss_tolerant else self.DRAIN

    @property
    def max_concurrent_node_updates(self) -> int:
        return (
            self.spec.max_concurrent_node_updates
            or self.conf.rollout_max_concurrent_nodes
        )

    @property
    def node_daemon_set(self) -> Identity:
        return Identity(
            "DaemonSet",
            self.namespace,
            CSIDriverDeploymentResources.node_daemon_set_name(self.name),
        )

    @property
    def has_node_rollout(self) -> bool:
        return True

    def build_children(self) -> List[JSON]:
        daemon_set, deployment = synthesize(
            self.name, self.namespace, self.spec, self.conf
        )
        return [daemon_set] if deployment is None else [daemon_set, deployment]
