"""Configuration for monitoring module."""

import os
from dataclasses import dataclass


@dataclass
class MonitoringConfig:
    """Configuration for health reconciliation and metrics."""

    # Reconciliation
    health_check_interval: float = 5.0  # seconds
    reconcile_streams: bool = True

    # Metrics
    metrics_enabled: bool = True

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Create configuration from environment variables.

        Returns:
            MonitoringConfig instance
        """
        return cls(
            health_check_interval=float(os.getenv("HEALTH_CHECK_INTERVAL", "5.0")),
            reconcile_streams=os.getenv("RECONCILE_STREAMS", "true").lower() == "true",
            metrics_enabled=os.getenv("METRICS_ENABLED", "true").lower() == "true",
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.health_check_interval <= 0:
            raise ValueError(f"Invalid health_check_interval: {self.health_check_interval}")


def get_config() -> MonitoringConfig:
    """Get monitoring configuration from environment.

    Returns:
        MonitoringConfig instance
    """
    config = MonitoringConfig.from_env()
    config.validate()
    return config
