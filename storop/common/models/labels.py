from typing import Dict


class ResourceLabels:
    STOROP_DOMAIN: str = "storop.io/"

    STOROP_KIND_LABEL = STOROP_DOMAIN + "kind"

    STOROP_CLUSTER_LABEL = STOROP_DOMAIN + "cluster"

    STOROP_NAMESPACE_LABEL = STOROP_DOMAIN + "namespace"

    STOROP_COMPONENT_TYPE_LABEL = STOROP_DOMAIN + "component-type"


class Labels(ResourceLabels):
    KUBERNETES_DOMAIN = "app.kubernetes.io/"

    KUBERNETES_NAME_LABEL = KUBERNETES_DOMAIN + "name"

    KUBERNETES_INSTANCE_LABEL = KUBERNETES_DOMAIN + "instance"

    KUBERNETES_PART_OF_LABEL = KUBERNETES_DOMAIN + "part-of"

    APPLICATION_NAME = "storop"

    KUBERNETES_MANAGED_BY_LABEL = KUBERNETES_DOMAIN + "managed-by"

    OPERATOR_NAME = "storop-operator"

    #: Label the DaemonSet controller stamps on every pod it creates
    POD_TEMPLATE_GENERATION_LABEL = "pod-template-generation"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels are dictionary."""
        return self._labels.copy()

    def as_str(self):
        """Return labels as comma separated string."""
        return ",".join([f"{k}={v}" for k, v in self._labels.items()])

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_storop_kind(self, kind) -> "Labels":
        return self.include(self.STOROP_KIND_LABEL, kind)

    def include_storop_cluster(self, cluster: str) -> "Labels":
        return self.include(self.STOROP_CLUSTER_LABEL, cluster)

    def include_storop_namespace(self, namespace: str) -> "Labels":
        return self.include(self.STOROP_NAMESPACE_LABEL, namespace or "")

    def include_storop_component_type(self, type: str) -> "Labels":
        return self.include(self.STOROP_COMPONENT_TYPE_LABEL, type)

    def include_kubernetes_name(self, name: str) -> "Labels":
        return self.include(self.KUBERNETES_NAME_LABEL, name)

    def include_kubernetes_instance(self, instance_name: str) -> "Labels":
        return self.include(self.KUBERNETES_INSTANCE_LABEL, instance_name)

    def include_kubernetes_part_of(self, instance_name: str) -> "Labels":
        return self.include(
            self.KUBERNETES_PART_OF_LABEL,
            self.get_or_valid_instance_label_value(
                f"{self.APPLICATION_NAME}-{instance_name}"
            ),
        )

    def include_kubernetes_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.KUBERNETES_MANAGED_BY_LABEL, operator_name)

    def get_or_valid_instance_label_value(self, instance: str):
        """Validates the instance name and if needed modifies it to make it a valid Label value:
        * (([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?
        * 63 characters max
        """

        if not instance:
            return ""

        value = instance[:63]
        return value.rstrip(".-_")

    def contains(self, other: "Labels"):
        """Returns True if all labels in `other` are contained."""
        return all(
            key in self._labels and self._labels[key] == value
            for key, value in other.as_dict().items()
        )

    def storop_label_selectors(self) -> "Labels":
        """Subset of labels identifying the owning parent resource."""
        selector_labels = [
            self.KUBERNETES_MANAGED_BY_LABEL,
            self.STOROP_KIND_LABEL,
            self.STOROP_CLUSTER_LABEL,
            self.STOROP_NAMESPACE_LABEL,
        ]
        return Labels(
            {
                key: self._labels[key]
                for key in selector_labels
                if key in self._labels
            }
        )

    def owner(self):
        """Returns the (kind, namespace, name) of the owning parent, or None
        when the labels do not carry the ownership marker."""
        if self._labels.get(self.KUBERNETES_MANAGED_BY_LABEL) != self.OPERATOR_NAME:
            return None
        kind = self._labels.get(self.STOROP_KIND_LABEL)
        name = self._labels.get(self.STOROP_CLUSTER_LABEL)
        if not kind or not name:
            return None
        return kind, self._labels.get(self.STOROP_NAMESPACE_LABEL) or None, name

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def ownership(cls, kind: str, namespace: str, name: str) -> "Labels":
        """Marker labels identifying children of a parent resource."""
        return (
            Labels()
            .include_kubernetes_managed_by(cls.OPERATOR_NAME)
            .include_storop_kind(kind)
            .include_storop_cluster(name)
            .include_storop_namespace(namespace)
        )

    @classmethod
    def generate_default_labels(
        cls,
        resource_name: str,
        resource_namespace: str,
        resource_kind: str,
        component_type: str,
    ) -> "Labels":
        return (
            cls.ownership(resource_kind, resource_namespace, resource_name)
            .include_storop_component_type(component_type)
            .include_kubernetes_name(component_type)
            .include_kubernetes_instance(resource_name)
            .include_kubernetes_part_of(resource_name)
        )
