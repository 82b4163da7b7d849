import kopf
from storop.handlers.common import (
    GROUP,
    request_reconciliation,
    resync,
    finalize,
)
from storop.types.settings import RESYNC_INTERVAL_SECONDS

KIND = "CSIDriverDeployment"


@kopf.on.resume(group=GROUP, kind=KIND)
@kopf.on.create(group=GROUP, kind=KIND)
@kopf.on.update(group=GROUP, kind=KIND)
async def reconciliation(body, memo, reason=None, **kwargs):
    """Reconcile CSIDriverDeployment resources."""
    await request_reconciliation(body, memo, reason)


@kopf.timer(group=GROUP, kind=KIND, initial_delay=RESYNC_INTERVAL_SECONDS, interval=RESYNC_INTERVAL_SECONDS)
async def periodic_resync(body, memo, **kwargs):
    await resync(body, memo)


@kopf.on.delete(group=GROUP, kind=KIND)
async def on_delete(body, memo, logger, **kwargs):
    """Delete the node DaemonSet and controller Deployment of the driver."""
    await finalize(body, memo, logger)
