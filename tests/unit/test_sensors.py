"""Unit tests for the sensor delegate and the Prometheus backend."""

import pytest
from prometheus_client import CollectorRegistry

from storop.engine.diffapply import DiffApplyEngine
from storop.resources import CSIDriverDeployment
from storop.sensors import OperatorSensor, PrometheusMonitor, SensorDelegate
from storop.store.base import Identity

from .conftest import csi_driver_body


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def sensor(registry):
    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor(registry=registry))
    return delegate


class BrokenSensor(OperatorSensor):
    def on_reconcile_start(self, *args):
        raise RuntimeError("broken")

    def on_node_phase_transition(self, *args):
        raise RuntimeError("broken")


class TestSensorDelegate:
    def test_reconcile_is_counted(self, sensor, registry):
        state = sensor.on_reconcile_start(
            "CSIDriverDeployment", "example", "storage", 1, "event"
        )
        sensor.on_reconcile_complete(
            "CSIDriverDeployment", "example", "storage", state, True
        )

        value = registry.get_sample_value(
            "storop_reconcile_total",
            {
                "kind": "CSIDriverDeployment",
                "name": "example",
                "namespace": "storage",
                "trigger_source": "event",
                "result": "success",
            },
        )
        assert value == 1.0

    def test_failing_sensor_does_not_break_others(self, sensor, registry):
        sensor.add(BrokenSensor())

        sensor.on_node_phase_transition("example", "storage", "node-1", "Pending", "Updating")
        state = sensor.on_reconcile_start(
            "CSIDriverDeployment", "example", "storage", 1, "timer"
        )

        assert state is not None
        value = registry.get_sample_value(
            "storop_node_phase_transitions_total",
            {
                "name": "example",
                "namespace": "storage",
                "from_phase": "Pending",
                "to_phase": "Updating",
            },
        )
        assert value == 1.0

    def test_no_sensors(self):
        delegate = SensorDelegate()

        assert delegate.on_reconcile_start("X", "a", None, 1, "event") is None
        delegate.on_reconcile_complete("X", "a", None, None, True)


class TestEngineMetrics:
    @pytest.mark.asyncio
    async def test_resource_sync_is_counted(self, store, ledger, settings, sensor, registry):
        engine = DiffApplyEngine(store, ledger, settings=settings, sensor=sensor)
        children = CSIDriverDeployment.from_body(
            csi_driver_body(), settings
        ).desired_children()

        await engine.reconcile(Identity("CSIDriverDeployment", "storage", "example"), children)

        value = registry.get_sample_value(
            "storop_resource_sync_total",
            {
                "parent_kind": "CSIDriverDeployment",
                "parent_name": "example",
                "namespace": "storage",
                "resource_type": "DaemonSet",
                "operation": "created",
                "result": "success",
            },
        )
        assert value == 1.0
