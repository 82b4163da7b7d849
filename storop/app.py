import kopf
import logging
import storop.handlers.csidriverdeployment as csidriverdeployment
import storop.handlers.provisioners as provisioners
import storop.handlers.children as children
from storop.types.settings import Settings
from storop.store.kubernetes import KubernetesObjectStore
from storop.store.drainer import KubernetesNodeDrainer
from storop.engine.ledger import GenerationLedger
from storop.engine.diffapply import DiffApplyEngine
from storop.engine.rollout import RolloutCoordinator, RolloutTable
from storop.engine.reconciler import Reconciler
from storop.engine.queue import ReconcileQueue
from storop.sensors import init_metrics_server, SensorDelegate, PrometheusMonitor
from kubernetes_asyncio import config
from kubernetes_asyncio.client.api_client import ApiClient


# Configure Kopf settings
@kopf.on.startup()
async def setup(
    settings: kopf.OperatorSettings, memo: kopf.Memo, logger: logging.Logger, **kwargs
):
    # Load Kubernetes config - try in-cluster first (for production), then local kubeconfig (for dev)
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        logger.info("In-cluster config not found, trying local kubeconfig")
        try:
            await config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    conf = Settings()
    memo.conf = conf

    # One ApiClient shared by the store and the drainer
    memo.api_client = ApiClient()
    store = KubernetesObjectStore(memo.api_client)
    drainer = KubernetesNodeDrainer(
        memo.api_client, store, poll_interval=conf.rollout_poll_interval_seconds
    )
    logger.info("Shared Kubernetes API client initialized")

    # Initialize sensor infrastructure
    sensor_delegate = SensorDelegate()
    sensor_delegate.add(PrometheusMonitor())
    memo.sensor = sensor_delegate
    logger.info("Sensor infrastructure initialized with PrometheusMonitor")

    ledger = GenerationLedger(
        store, conf.operator_namespace, conf.ledger_config_map_name
    )
    await ledger.load()
    logger.info(f"Generation ledger loaded with {len(ledger)} records")

    table = RolloutTable()
    engine = DiffApplyEngine(store, ledger, settings=conf, sensor=sensor_delegate)
    coordinator = RolloutCoordinator(
        store, drainer, table, settings=conf, sensor=sensor_delegate
    )
    reconciler = Reconciler(
        store, engine, coordinator, table, settings=conf, sensor=sensor_delegate
    )
    memo.queue = ReconcileQueue(
        reconciler,
        workers=conf.worker_count,
        base_delay=conf.requeue_base_delay_seconds,
        max_delay=conf.requeue_max_delay_seconds,
        sensor=sensor_delegate,
    )
    memo.queue.start()

    # Initialize Prometheus metrics server
    try:
        init_metrics_server()
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logger.warning("Continuing without metrics server")

    # Handlers only enqueue; the queue workers do the actual work
    settings.batching.worker_limit = conf.worker_count

    # Keep handler progress and diff-base out of the kopf.zalando.org namespace
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix="storop.io"
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix="storop.io", key="last-handled-configuration"
    )

    # Only post events to the Kubernetes API for logging >= Warning
    settings.posting.enabled = True
    settings.posting.level = logging.WARNING


@kopf.on.cleanup()
async def cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs):
    """Cleanup handler for operator shutdown."""
    logger.info("Shutting down operator...")

    queue = getattr(memo, "queue", None)
    if queue is not None:
        await queue.stop()
        logger.info("Reconciliation workers stopped")

    api_client = getattr(memo, "api_client", None)
    if api_client is not None:
        await api_client.close()
        logger.info("Shared API client closed")

    logger.info("Operator shutdown complete")


__all__ = [
    "csidriverdeployment",
    "provisioners",
    "children",
]
