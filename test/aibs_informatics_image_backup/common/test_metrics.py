from datetime import datetime, timedelta, timezone
from test.base import BaseTest
from unittest import mock

from aws_lambda_powertools.metrics import MetricUnit

from aibs_informatics_image_backup.common.metrics import (
    DEFAULT_METRICS_NAMESPACE,
    METRICS_NAMESPACE_ENV_VAR,
    EnhancedMetrics,
    MetricsMixins,
)


class SweepProbe(MetricsMixins):
    pass


class EnhancedMetricsTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.mock_add_metric = self.create_patch(
            "aibs_informatics_image_backup.common.metrics.EnhancedMetrics.add_metric"
        )

    def test__add_success_metric__pairs_success_and_failure(self):
        EnhancedMetrics(namespace="test").add_success_metric("Backup")

        self.mock_add_metric.assert_has_calls(
            [
                mock.call(name="BackupSuccess", unit=MetricUnit.Count, value=1),
                mock.call(name="BackupFailure", unit=MetricUnit.Count, value=0),
            ]
        )

    def test__add_failure_metric__pairs_success_and_failure(self):
        EnhancedMetrics(namespace="test").add_failure_metric("Backup")

        self.mock_add_metric.assert_has_calls(
            [
                mock.call(name="BackupSuccess", unit=MetricUnit.Count, value=0),
                mock.call(name="BackupFailure", unit=MetricUnit.Count, value=1),
            ]
        )

    def test__add_duration_metric__records_milliseconds(self):
        start = datetime(2024, 3, 15, 12, tzinfo=timezone.utc)

        EnhancedMetrics(namespace="test").add_duration_metric(
            start, start + timedelta(seconds=2), name="Backup"
        )

        self.mock_add_metric.assert_called_once_with(
            name="BackupDuration", unit=MetricUnit.Milliseconds, value=2000
        )


class MetricsMixinsTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.set_env_vars(("POWERTOOLS_SERVICE_NAME", ""), (METRICS_NAMESPACE_ENV_VAR, ""))

    def test__metrics__uses_default_namespace(self):
        mock_metrics_cls = self.create_patch(
            "aibs_informatics_image_backup.common.metrics.EnhancedMetrics"
        )

        metrics = SweepProbe().metrics

        self.assertIs(metrics, mock_metrics_cls.return_value)
        mock_metrics_cls.assert_called_once_with(
            service="SweepProbe", namespace=DEFAULT_METRICS_NAMESPACE
        )
        metrics.add_dimension.assert_called_once_with(name="handler_name", value="SweepProbe")

    def test__metrics__is_cached(self):
        probe = SweepProbe()
        self.assertIsInstance(probe.metrics, EnhancedMetrics)
        self.assertIs(probe.metrics, probe.metrics)
