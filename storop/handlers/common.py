import kopf
import logging
from storop.store.base import Identity
from storop.utils.errors import StoropError, to_kopf_error

GROUP = "storage.openshift.io"


class TimerLogFilter(logging.Filter):
    def filter(self, record):
        """Timer logs are noisy so we filter them out."""
        return "Timer " not in record.getMessage()


kopf_logger = logging.getLogger("kopf.objects")
kopf_logger.addFilter(TimerLogFilter())


def resource_key(body) -> Identity:
    return Identity(body["kind"], body["metadata"].get("namespace"), body["metadata"]["name"])


async def request_reconciliation(body, memo: kopf.Memo, reason=None, **kwargs):
    """Queue a reconciliation pass for the resource."""
    source = getattr(reason, "value", reason) or "event"
    memo.queue.add(resource_key(body), trigger_source=str(source))


async def resync(body, memo: kopf.Memo, **kwargs):
    """Periodic pass, catches drift of children nobody told us about."""
    memo.queue.add(resource_key(body), trigger_source="timer")


async def finalize(body, memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Remove the children, then let kopf release the finalizer."""
    key = resource_key(body)
    waiter = memo.queue.add(key, trigger_source="delete", wait=True)
    try:
        await waiter
    except StoropError as ex:
        logger.warning(f"Removing children of {key} failed: {ex}")
        to_kopf_error(ex, delay=10)
    memo.queue.forget(key)
    logger.info(f"Children of {key} removed")
