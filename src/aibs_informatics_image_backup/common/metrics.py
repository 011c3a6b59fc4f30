"""Metrics utilities for the image backup Lambda handlers.

Metrics are collected with AWS Lambda Powertools and published in the CloudWatch
embedded metric format when flushed.
"""

from datetime import datetime
from typing import Optional

from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.metrics import Metrics, MetricUnit

from aibs_informatics_image_backup.common.base import HandlerMixins

METRICS_NAMESPACE_ENV_VAR = "POWERTOOLS_METRICS_NAMESPACE"
DEFAULT_METRICS_NAMESPACE = "aibs/ImageBackup"

METRICS_ATTR = "_metrics"


class EnhancedMetrics(Metrics):
    """Extended Metrics class with helpers for counts, durations and success/failure pairs."""

    def add_count_metric(self, name: str, value: float):
        self.add_metric(name=name, unit=MetricUnit.Count, value=value)

    def add_duration_metric(self, start: datetime, end: Optional[datetime] = None, name: str = ""):
        """Record `end - start` in milliseconds as `{name}Duration`."""
        end = end or datetime.now(start.tzinfo)
        self.add_metric(
            name=f"{name}Duration",
            unit=MetricUnit.Milliseconds,
            value=(end - start).total_seconds() * 1000,
        )

    def add_success_metric(self, name: str = ""):
        self.add_metric(name=f"{name}Success", unit=MetricUnit.Count, value=1)
        self.add_metric(name=f"{name}Failure", unit=MetricUnit.Count, value=0)

    def add_failure_metric(self, name: str = ""):
        self.add_metric(name=f"{name}Success", unit=MetricUnit.Count, value=0)
        self.add_metric(name=f"{name}Failure", unit=MetricUnit.Count, value=1)


class MetricsMixins(HandlerMixins):
    """Mixin class providing CloudWatch metrics capabilities."""

    @property
    def metrics(self) -> EnhancedMetrics:
        """Get the metrics collector, creating one if needed."""
        if not hasattr(self, METRICS_ATTR):
            self.metrics = self.get_metrics(
                service=self.service_name(), handler_name=self.handler_name()
            )
        return getattr(self, METRICS_ATTR)

    @metrics.setter
    def metrics(self, value: EnhancedMetrics):
        setattr(self, METRICS_ATTR, value)

    @classmethod
    def get_metrics(
        cls,
        service: Optional[str] = None,
        namespace: Optional[str] = None,
        **additional_dimensions: str,
    ) -> EnhancedMetrics:
        """Create a new EnhancedMetrics instance.

        Args:
            service (Optional[str]): The service name for metrics.
            namespace (Optional[str]): The CloudWatch namespace. Defaults to
                `POWERTOOLS_METRICS_NAMESPACE` or `aibs/ImageBackup`.
            **additional_dimensions (str): Additional metric dimensions as key-value pairs.
        """
        metrics = EnhancedMetrics(
            service=service,
            namespace=namespace
            or get_env_var(METRICS_NAMESPACE_ENV_VAR)
            or DEFAULT_METRICS_NAMESPACE,
        )
        for dimension_name, dimension_value in additional_dimensions.items():
            metrics.add_dimension(name=dimension_name, value=dimension_value)
        return metrics
