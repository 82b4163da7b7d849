"""Storage operator sensor framework.

Lifecycle events of the operator (reconciliation passes, child object syncs,
node rollout transitions) are reported to sensors. The engine only ever
talks to a SensorDelegate, which fans events out to the configured backends.

Usage:
    from storop.sensors import SensorDelegate, PrometheusMonitor

    delegate = SensorDelegate()
    delegate.add(PrometheusMonitor())
"""

from storop.sensors.base import OperatorSensor
from storop.sensors.delegate import SensorDelegate
from storop.sensors.prometheus import PrometheusMonitor
from storop.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
