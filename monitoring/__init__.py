"""Monitoring & Health Reconciliation module.

Provides Prometheus metrics and the periodic reconciliation loop that keeps
recorded stream status in line with live workers.
"""

from .config import MonitoringConfig
from .metrics import MetricsExporter
from .reconciler import HealthReconciler

__all__ = [
    "MetricsExporter",
    "MonitoringConfig",
    "HealthReconciler",
]

__version__ = "1.0.0"
