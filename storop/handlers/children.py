import kopf
from storop.common.models.labels import Labels
from storop.resources import KINDS
from storop.store.base import Identity

MANAGED = {Labels.KUBERNETES_MANAGED_BY_LABEL: Labels.OPERATOR_NAME}


@kopf.on.event("apps", "v1", "daemonsets", labels=MANAGED)
@kopf.on.event("apps", "v1", "deployments", labels=MANAGED)
@kopf.on.event("storage.k8s.io", "v1", "storageclasses", labels=MANAGED)
async def on_child_event(labels, memo: kopf.Memo, **kwargs):
    """Requeue the owner whenever one of its children changes or disappears."""
    owner = Labels(dict(labels)).owner()
    if owner is None or owner[0] not in KINDS:
        return
    memo.queue.add(Identity(*owner), trigger_source="child")
