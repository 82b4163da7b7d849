import copy
import hashlib
import logging
from logging import Logger
from typing import Any, Dict, List, Optional, Union

import kopf
import mmh3

from storop.common.models.labels import Labels
from storop.types.base import JSON
from storop.types.settings import Settings
from storop.utils.helpers import canonicalize_dict


class BaseResource:
    """Base resource model.

    A resource wraps one parent custom object and knows how to build the
    manifests of its children. Subclasses implement `build_children`.
    """

    HASH_ANNOTATION = "storop.io/resource-hash"

    GROUP_NAME = "storage.openshift.io"
    GROUP_VERSION = "v1alpha1"

    KIND: str = None
    COMPONENT_TYPE: str = None

    logger: Logger
    conf: Settings

    _name: str
    _namespace: str
    _labels: Labels
    _body: JSON

    #: Kinds this resource may create. Cluster scoped kinds do not get owner references.
    CLUSTER_SCOPED_KINDS = ("StorageClass",)

    def __init__(
        self,
        name: str,
        namespace: str,
        body: JSON = None,
        conf: Settings = None,
        logger: Logger = None,
    ):
        self._name = name
        self._namespace = namespace
        self._body = body or {}
        self.conf = conf or Settings()
        self.logger = logger or logging.getLogger(__name__)
        self._labels = Labels.generate_default_labels(
            name, namespace, self.KIND, self.COMPONENT_TYPE
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def labels(self) -> Labels:
        return self._labels

    @property
    def body(self) -> JSON:
        return self._body

    @property
    def has_node_rollout(self) -> bool:
        return False

    def compute_hash(self, data: Any) -> str:
        """Compute a murmur3 hash."""
        if isinstance(data, dict):
            _data = canonicalize_dict(data)
        elif isinstance(data, str):
            _data = data
        else:
            raise ValueError(f"Hash of {type(data)} is not supported.")
        mumur_str = str(mmh3.hash128(_data.encode("utf-8")))

        hash_obj = hashlib.sha256(mumur_str.encode("utf-8"))
        full_hash = hash_obj.hexdigest()

        # First 16 characters are enough for an annotation
        return full_hash[:16]

    def prepare_hash_annotation(self, hash: Union[str, int]) -> Dict[str, str]:
        """Prepare hash annotation for k8s resources."""
        return {self.HASH_ANNOTATION: str(hash)}

    def prepare_metadata(self, name: str, namespaced: bool = True) -> JSON:
        metadata = {"name": name, "labels": self.labels.as_dict()}
        if namespaced:
            metadata["namespace"] = self.namespace
        return metadata

    def unite(self, children: List[JSON]) -> List[JSON]:
        """Mark children as owned by this resource and stamp their content hash.

        The hash is computed over the manifest without ownership metadata so
        that it only changes when the desired content does.
        """
        result = []
        for child in children:
            child = copy.deepcopy(child)
            metadata = child.setdefault("metadata", {})
            labels = metadata.setdefault("labels", {})
            labels.update(self.labels.storop_label_selectors().as_dict())
            annotations = metadata.setdefault("annotations", {})
            annotations.pop(self.HASH_ANNOTATION, None)
            annotations.update(self.prepare_hash_annotation(self.compute_hash(child)))
            if child["kind"] not in self.CLUSTER_SCOPED_KINDS and self._body.get(
                "metadata", {}
            ).get("uid"):
                kopf.append_owner_reference(child, owner=self._body)
            result.append(child)
        return result

    def build_children(self) -> List[JSON]:
        raise NotImplementedError()

    def desired_children(self) -> List[JSON]:
        return self.unite(self.build_children())

    def image_or(self, default: str, override: Optional[str] = None) -> str:
        return override or default
