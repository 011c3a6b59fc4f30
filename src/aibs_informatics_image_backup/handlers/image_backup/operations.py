"""Lambda handlers for scheduled image backups.

`ImageBackupHandler` runs the full backup (every configured scaling group, then the
retention sweep). `RetentionSweepHandler` runs only the retention sweep.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from aibs_informatics_core.utils.time import get_current_time

from aibs_informatics_image_backup.common.handler import LambdaHandler
from aibs_informatics_image_backup.core.config import ImageBackupConfig
from aibs_informatics_image_backup.core.gateway import ImageGateway
from aibs_informatics_image_backup.core.model import BackupOutcome, BackupStatus, BackupSummary
from aibs_informatics_image_backup.core.orchestrator import BackupOrchestrator
from aibs_informatics_image_backup.exceptions import ConfigurationError
from aibs_informatics_image_backup.handlers.image_backup.model import (
    ImageBackupRequest,
    ImageBackupResponse,
)


@dataclass  # type: ignore[misc] # mypy #5374
class BaseImageBackupHandler(LambdaHandler[ImageBackupRequest, ImageBackupResponse]):
    """Shared configuration and metrics handling for the image backup handlers.

    Attributes:
        gateway: Optional pre-built gateway. Built from the configuration if omitted.
        sleep: Delay function used while polling image states.
    """

    gateway: Optional[ImageGateway] = None
    sleep: Callable[[float], None] = time.sleep

    metric_name = "Backup"
    requires_scaling_groups = True

    def handle(self, request: ImageBackupRequest) -> ImageBackupResponse:
        start = get_current_time()
        try:
            config = ImageBackupConfig.load(
                require_scaling_groups=self.requires_scaling_groups,
                **request.config_overrides(),
            )
        except ConfigurationError as e:
            self.logger.error(f"Invalid image backup configuration: {e}")
            self.metrics.add_failure_metric(self.metric_name)
            self.metrics.flush_metrics()
            return ImageBackupResponse.failed(str(e))

        self.logger.info(
            f"Running {self.handler_name()}: {len(config.scaling_group_names)} groups, "
            f"{config.source_region} -> {config.target_region}, "
            f"retention {config.retention_days} days, "
            f"{config.managed_by_tag_key}={config.managed_by}"
        )
        orchestrator = BackupOrchestrator(config=config, gateway=self.gateway, sleep=self.sleep)
        summary = self.run(orchestrator)

        self.record_metrics(summary, start)
        return ImageBackupResponse.ok(summary)

    def run(self, orchestrator: BackupOrchestrator) -> BackupSummary:
        raise NotImplementedError("Please implement `run` method")  # pragma: no cover

    def record_metrics(self, summary: BackupSummary, start: datetime):
        self.metrics.add_count_metric(
            "GroupsSucceeded", len(summary.groups_with_outcome(BackupOutcome.SUCCESS))
        )
        self.metrics.add_count_metric(
            "GroupsSkipped", len(summary.groups_with_outcome(BackupOutcome.SKIPPED))
        )
        self.metrics.add_count_metric(
            "GroupsFailed", len(summary.groups_with_outcome(BackupOutcome.FAILED))
        )
        self.metrics.add_count_metric("ImagesSwept", summary.sweep.images_deleted)
        self.metrics.add_count_metric("SnapshotsSwept", summary.sweep.snapshots_deleted)
        if summary.status == BackupStatus.SUCCEEDED:
            self.metrics.add_success_metric(self.metric_name)
        else:
            self.metrics.add_failure_metric(self.metric_name)
        self.metrics.add_duration_metric(start=start, name=self.metric_name)
        self.metrics.flush_metrics()


@dataclass  # type: ignore[misc] # mypy #5374
class ImageBackupHandler(BaseImageBackupHandler):
    def run(self, orchestrator: BackupOrchestrator) -> BackupSummary:
        return orchestrator.run()


@dataclass  # type: ignore[misc] # mypy #5374
class RetentionSweepHandler(BaseImageBackupHandler):
    metric_name = "RetentionSweep"
    requires_scaling_groups = False

    def run(self, orchestrator: BackupOrchestrator) -> BackupSummary:
        return orchestrator.run_sweep_only()


lambda_handler = ImageBackupHandler.get_handler()
retention_sweep_handler = RetentionSweepHandler.get_handler()
