"""Sensor delegation for fan-out pattern.

SensorDelegate routes sensor events to multiple monitoring backends. Each
backend receives the same events and keeps independent state. A failing
sensor is logged and never affects the operator or the other sensors.
"""

from typing import Set, Dict, List, Optional, Any
import logging

from storop.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())
        state = delegate.on_reconcile_start("CSIDriverDeployment", "ebs", "default", 3, "event")
        delegate.on_reconcile_complete("CSIDriverDeployment", "ebs", "default", state, True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def _start(self, hook: str, *args) -> Optional[Dict[OperatorSensor, Any]]:
        if not self._sensors:
            return None
        states = {}
        for sensor in self._sensors:
            try:
                state = getattr(sensor, hook)(*args)
                if state is not None:
                    states[sensor] = state
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )
        return states if states else None

    def _complete(self, hook: str, state, *args, **kwargs) -> None:
        for sensor in self._sensors:
            try:
                sensor_state = state.get(sensor) if state else None
                getattr(sensor, hook)(*args, sensor_state, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    def _notify(self, hook: str, *args) -> None:
        for sensor in self._sensors:
            try:
                getattr(sensor, hook)(*args)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}",
                    exc_info=True,
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(self, kind, name, namespace, generation, trigger_source):
        return self._start(
            "on_reconcile_start", kind, name, namespace, generation, trigger_source
        )

    def on_reconcile_complete(
        self, kind, name, namespace, state, success, error=None
    ) -> None:
        self._complete(
            "on_reconcile_complete",
            state,
            kind,
            name,
            namespace,
            success=success,
            error=error,
        )

    def on_reconcile_queued(self, queue_depth: int) -> None:
        self._notify("on_reconcile_queued", queue_depth)

    def on_reconcile_dequeued(self, kind, name, namespace, wait_time) -> None:
        self._notify("on_reconcile_dequeued", kind, name, namespace, wait_time)

    # =============================================================================
    # Resource Operation Hooks
    # =============================================================================

    def on_resource_sync_start(
        self, parent_kind, parent_name, resource_name, namespace, resource_type
    ):
        return self._start(
            "on_resource_sync_start",
            parent_kind,
            parent_name,
            resource_name,
            namespace,
            resource_type,
        )

    def on_resource_sync_complete(
        self,
        parent_kind,
        parent_name,
        resource_name,
        namespace,
        resource_type,
        state,
        operation,
        success,
        error=None,
    ) -> None:
        self._complete(
            "on_resource_sync_complete",
            state,
            parent_kind,
            parent_name,
            resource_name,
            namespace,
            resource_type,
            operation=operation,
            success=success,
            error=error,
        )

    def on_resource_drift_detected(
        self, parent_kind, parent_name, resource_name, namespace, resource_type, reason
    ) -> None:
        self._notify(
            "on_resource_drift_detected",
            parent_kind,
            parent_name,
            resource_name,
            namespace,
            resource_type,
            reason,
        )

    def on_adoption_skipped(
        self, parent_kind, parent_name, resource_name, resource_type
    ) -> None:
        self._notify(
            "on_adoption_skipped", parent_kind, parent_name, resource_name, resource_type
        )

    # =============================================================================
    # Node Rollout Hooks
    # =============================================================================

    def on_node_phase_transition(
        self, name, namespace, node_name, old_phase, new_phase
    ) -> None:
        self._notify(
            "on_node_phase_transition", name, namespace, node_name, old_phase, new_phase
        )

    def on_rollout_halted(self, name, namespace, node_name, reason) -> None:
        self._notify("on_rollout_halted", name, namespace, node_name, reason)

    # =============================================================================
    # Status Update Hooks
    # =============================================================================

    def on_status_update(self, kind, name, namespace, update_fields: List[str]) -> None:
        self._notify("on_status_update", kind, name, namespace, update_fields)

