import datetime
import kopf


# Liveness probe
@kopf.on.probe(id='now')
def get_current_timestamp(**kwargs):
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@kopf.on.probe(id='reconcile_queue_depth')
def get_queue_depth(memo: kopf.Memo, **kwargs):
    queue = getattr(memo, "queue", None)
    return queue.depth() if queue is not None else 0


@kopf.on.probe(id='reconcile_workers_running')
def get_workers_running(memo: kopf.Memo, **kwargs):
    queue = getattr(memo, "queue", None)
    return queue is not None and queue.running
