import kopf
from storop.handlers.common import (
    GROUP,
    request_reconciliation,
    resync,
    finalize,
)
from storop.types.settings import RESYNC_INTERVAL_SECONDS

KINDS = (
    "EFSProvisioner",
    "ManilaProvisioner",
    "CephFSProvisioner",
    "SnapshotController",
    "LocalStorageProvider",
)


async def reconciliation(body, memo, reason=None, **kwargs):
    """Reconcile provisioner resources."""
    await request_reconciliation(body, memo, reason)


async def periodic_resync(body, memo, **kwargs):
    await resync(body, memo)


async def on_delete(body, memo, logger, **kwargs):
    await finalize(body, memo, logger)


for _kind in KINDS:
    kopf.on.resume(group=GROUP, kind=_kind)(reconciliation)
    kopf.on.create(group=GROUP, kind=_kind)(reconciliation)
    kopf.on.update(group=GROUP, kind=_kind)(reconciliation)
    kopf.timer(
        group=GROUP,
        kind=_kind,
        initial_delay=RESYNC_INTERVAL_SECONDS,
        interval=RESYNC_INTERVAL_SECONDS,
    )(periodic_resync)
    kopf.on.delete(group=GROUP, kind=_kind)(on_delete)
