class ProvisionerResources:
    """Naming scheme of the resources created for the single-Deployment provisioners."""

    @classmethod
    def deployment_name(self, name: str):
        return f"{name}-provisioner"

    @classmethod
    def daemon_set_name(self, name: str):
        return f"{name}-local-provisioner"

    @classmethod
    def config_map_name(self, name: str):
        return f"{name}-local-provisioner-config"

