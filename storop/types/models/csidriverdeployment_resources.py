class CSIDriverDeploymentResources:
    """Encapsulates the naming scheme used for the resources which the operator manages
    for a CSIDriverDeployment."""

    @classmethod
    def node_daemon_set_name(self, name: str):
        """Returns the name of the DaemonSet running the node plugin."""
        return f"{name}-node"

    @classmethod
    def controller_deployment_name(self, name: str):
        """Returns the name of the Deployment running the controller plugin."""
        return f"{name}-controller"

    @classmethod
    def plugin_dir(self, kubelet_dir: str, driver_name: str):
        """Returns the host directory exposing the driver socket to kubelet."""
        return f"{kubelet_dir.rstrip('/')}/plugins/{driver_name}/"

    @classmethod
    def registration_dir(self, kubelet_dir: str):
        return f"{kubelet_dir.rstrip('/')}/plugins_registry/"
