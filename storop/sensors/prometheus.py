"""Prometheus monitoring backend for the storage operator.

PrometheusMonitor turns sensor events into Prometheus metrics:

1. Reconciliation loop health - duration, queue depth, throughput, errors
2. Child resource sync - operation counts, latency, drift, adoption skips
3. Node rollout - phase transitions and halted rollouts
"""

from typing import Dict, List, Optional, Any
import time
import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, Gauge, REGISTRY

from storop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the storage operator.

    Metrics are prefixed with `storop_` and labeled with the parent kind,
    name and namespace so they can be filtered per custom resource.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'storop_reconcile_duration_seconds',
            'Time spent in one reconciliation pass',
            labelnames=['kind', 'name', 'namespace', 'trigger_source', 'result'],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 600.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            'storop_reconcile_total',
            'Total number of reconciliation passes',
            labelnames=['kind', 'name', 'namespace', 'trigger_source', 'result'],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            'storop_reconcile_errors_total',
            'Total number of failed reconciliation passes',
            labelnames=['kind', 'name', 'namespace', 'error_type'],
            registry=registry,
        )

        self.reconcile_queue_depth = Gauge(
            'storop_reconcile_queue_depth',
            'Keys waiting for a reconciliation worker',
            registry=registry,
        )

        self.reconcile_queue_wait_seconds = Histogram(
            'storop_reconcile_queue_wait_seconds',
            'Time a key spent waiting in the reconciliation queue',
            labelnames=['kind', 'namespace'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 300.0],
            registry=registry,
        )

        # =============================================================================
        # Child Resource Sync Metrics
        # =============================================================================

        self.resource_sync_duration = Histogram(
            'storop_resource_sync_duration_seconds',
            'Time spent syncing child objects',
            labelnames=['parent_kind', 'resource_type', 'operation', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self.resource_sync_total = Counter(
            'storop_resource_sync_total',
            'Total number of child object sync operations',
            labelnames=['parent_kind', 'parent_name', 'namespace', 'resource_type', 'operation', 'result'],
            registry=registry,
        )

        self.resource_sync_errors = Counter(
            'storop_resource_sync_errors_total',
            'Total number of child object sync errors',
            labelnames=['parent_kind', 'parent_name', 'namespace', 'resource_type', 'error_type'],
            registry=registry,
        )

        self.resource_drift_detected = Counter(
            'storop_resource_drift_detected_total',
            'Total number of child objects found out of sync',
            labelnames=['parent_kind', 'parent_name', 'namespace', 'resource_type', 'reason'],
            registry=registry,
        )

        self.adoption_skipped = Counter(
            'storop_adoption_skipped_total',
            'Pre-existing objects left untouched because the operator does not own them',
            labelnames=['parent_kind', 'parent_name', 'resource_type'],
            registry=registry,
        )

        # =============================================================================
        # Node Rollout Metrics
        # =============================================================================

        self.node_phase_transitions = Counter(
            'storop_node_phase_transitions_total',
            'Total number of node rollout phase transitions',
            labelnames=['name', 'namespace', 'from_phase', 'to_phase'],
            registry=registry,
        )

        self.rollouts_halted = Counter(
            'storop_rollouts_halted_total',
            'Total number of node rollouts halted by a failed node',
            labelnames=['name', 'namespace'],
            registry=registry,
        )

        # =============================================================================
        # Status Update Metrics
        # =============================================================================

        self.status_updates = Counter(
            'storop_status_updates_total',
            'Total number of status updates',
            labelnames=['kind', 'namespace', 'update_field'],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        kind: str,
        name: str,
        namespace: str,
        generation: int,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        kind: str,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            trigger_source = state['trigger_source']
            result = 'success' if success else 'failure'
            labels = dict(
                kind=kind,
                name=name,
                namespace=namespace or '',
                trigger_source=trigger_source,
                result=result,
            )
            self.reconcile_duration.labels(**labels).observe(duration)
            self.reconcile_total.labels(**labels).inc()

        if error:
            self.reconcile_errors.labels(
                kind=kind,
                name=name,
                namespace=namespace or '',
                error_type=error.__class__.__name__,
            ).inc()

    def on_reconcile_queued(self, queue_depth: int) -> None:
        self.reconcile_queue_depth.set(queue_depth)

    def on_reconcile_dequeued(
        self,
        kind: str,
        name: str,
        namespace: str,
        wait_time: float,
    ) -> None:
        self.reconcile_queue_wait_seconds.labels(
            kind=kind,
            namespace=namespace or '',
        ).observe(wait_time)

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
    ) -> Optional[Dict[str, Any]]:
        """Record resource sync start time."""
        return {'start_time': time.time()}

    def on_resource_sync_complete(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        state: Optional[Dict[str, Any]],
        operation: str,
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record resource sync duration and result."""
        result = 'success' if success else 'failure'
        if state:
            self.resource_sync_duration.labels(
                parent_kind=parent_kind,
                resource_type=resource_type,
                operation=operation,
                result=result,
            ).observe(time.time() - state['start_time'])

        self.resource_sync_total.labels(
            parent_kind=parent_kind,
            parent_name=parent_name,
            namespace=namespace or '',
            resource_type=resource_type,
            operation=operation,
            result=result,
        ).inc()

        if error:
            self.resource_sync_errors.labels(
                parent_kind=parent_kind,
                parent_name=parent_name,
                namespace=namespace or '',
                resource_type=resource_type,
                error_type=error.__class__.__name__,
            ).inc()

    def on_resource_drift_detected(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        reason: str,
    ) -> None:
        self.resource_drift_detected.labels(
            parent_kind=parent_kind,
            parent_name=parent_name,
            namespace=namespace or '',
            resource_type=resource_type,
            reason=reason,
        ).inc()

    def on_adoption_skipped(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        resource_type: str,
    ) -> None:
        self.adoption_skipped.labels(
            parent_kind=parent_kind,
            parent_name=parent_name,
            resource_type=resource_type,
        ).inc()

    # =============================================================================
    # Node Rollout Hooks
    # =============================================================================

    def on_node_phase_transition(
        self,
        name: str,
        namespace: str,
        node_name: str,
        old_phase: str,
        new_phase: str,
    ) -> None:
        self.node_phase_transitions.labels(
            name=name,
            namespace=namespace or '',
            from_phase=old_phase,
            to_phase=new_phase,
        ).inc()

    def on_rollout_halted(
        self,
        name: str,
        namespace: str,
        node_name: str,
        reason: str,
    ) -> None:
        self.rollouts_halted.labels(name=name, namespace=namespace or '').inc()

    # =============================================================================
    # Status Update Hooks
    # =============================================================================

    def on_status_update(
        self,
        kind: str,
        name: str,
        namespace: str,
        update_fields: List[str],
    ) -> None:
        for field in update_fields:
            self.status_updates.labels(
                kind=kind,
                namespace=namespace or '',
                update_field=field,
            ).inc()
