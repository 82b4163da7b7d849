"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring operator events. All hooks are no-ops by default, allowing
subclasses to override only the events they care about.

Hooks come in pairs where an operation has a duration: the start hook returns
an optional state dict which is handed to the matching complete hook.
"""

from typing import Dict, List, Optional, Any
import logging

logger = logging.getLogger(__name__)


class OperatorSensor:
    """Base sensor class for storage operator monitoring.

    Hook categories:
    1. Reconciliation lifecycle (one pass of the reconciler for one key)
    2. Child resource operations (create/update/delete of child objects)
    3. Node rollout (per-node phase transitions of CSI node plugins)

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, kind, name, namespace, generation, trigger_source):
                return {'start_time': time.time()}

            def on_reconcile_complete(self, kind, name, namespace, state, success, error=None):
                duration = time.time() - state['start_time']
                logger.info(f"Reconciled {kind}/{name} in {duration}s")
    """

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
        """Called when a reconciliation pass begins.

        Args:
            kind: Parent resource kind
            name: Parent resource name
            namespace: Kubernetes namespace
            generation: Parent generation being reconciled
            trigger_source: What queued the pass (event, timer, child, retry)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        kind: str,
        name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconciliation pass completes.

        Args:
            kind: Parent resource kind
            name: Parent resource name
            namespace: Kubernetes namespace
            state: State dict returned from on_reconcile_start
            success: Whether the pass succeeded
            error: Exception if the pass failed
        """
        pass

    def on_reconcile_queued(self, queue_depth: int) -> None:
        """Called when a key is added to the work queue.

        Args:
            queue_depth: Keys waiting for a worker after the add
        """
        pass

    def on_reconcile_dequeued(
        self,
        kind: str,
        name: str,
        namespace: str,
        wait_time: float,
    ) -> None:
        """Called when a worker picks up a key.

        Args:
            wait_time: Time the key spent in the queue (seconds)
        """
        pass

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
        """Called when a child object is compared with its desired state.

        Returns:
            Optional state dict passed to on_resource_sync_complete
        """
        pass

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
        """Called when a child object sync completes.

        Args:
            operation: Operation performed (created, updated, deleted, skipped, no-op)
        """
        pass

    def on_resource_drift_detected(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        namespace: str,
        resource_type: str,
        reason: str,
    ) -> None:
        """Called when a child object differs from its desired state.

        Args:
            reason: Why the child is considered drifted (hash, generation)
        """
        pass

    def on_adoption_skipped(
        self,
        parent_kind: str,
        parent_name: str,
        resource_name: str,
        resource_type: str,
    ) -> None:
        """Called when a pre-existing object not owned by the operator is left untouched."""
        pass

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
        """Called when a node moves to another rollout phase.

        Args:
            name: CSIDriverDeployment name
            namespace: Kubernetes namespace
            node_name: Node being updated
            old_phase: Previous phase (Pending, Cordoning, ...)
            new_phase: New phase
        """
        pass

    def on_rollout_halted(
        self,
        name: str,
        namespace: str,
        node_name: str,
        reason: str,
    ) -> None:
        """Called when a node failed and the rollout stops starting new nodes."""
        pass

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
        """Called when status is written.

        Args:
            update_fields: Top level status fields that changed
        """
        pass

