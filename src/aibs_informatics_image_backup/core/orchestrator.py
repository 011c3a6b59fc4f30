"""Runs the image pipeline for every configured group, then the retention sweep."""

__all__ = [
    "BackupOrchestrator",
]

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from aibs_informatics_core.utils.logging import get_logger
from aibs_informatics_core.utils.time import get_current_time

from aibs_informatics_image_backup.core.config import ImageBackupConfig
from aibs_informatics_image_backup.core.gateway import ImageGateway
from aibs_informatics_image_backup.core.model import BackupSummary, GroupBackupResult, SweepResult
from aibs_informatics_image_backup.core.pipeline import ImagePipeline
from aibs_informatics_image_backup.core.retention import RetentionSweeper

logger = get_logger(__name__)


@dataclass
class BackupOrchestrator:
    """Sequentially backs up each scaling group and sweeps expired copies once.

    A failure in one group is recorded and never prevents the following groups, or the
    sweep, from running. Concurrent invocations are not coordinated; the scheduler is
    expected to run at most one invocation at a time.
    """

    config: ImageBackupConfig
    gateway: Optional[ImageGateway] = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = get_current_time
    pipeline: ImagePipeline = field(init=False)
    sweeper: RetentionSweeper = field(init=False)

    def __post_init__(self):
        if self.gateway is None:
            self.gateway = ImageGateway(
                source_region=self.config.source_region, no_reboot=self.config.no_reboot
            )
        self.pipeline = ImagePipeline(
            gateway=self.gateway,
            target_region=self.config.target_region,
            managed_by_tag_key=self.config.managed_by_tag_key,
            managed_by=self.config.managed_by,
            poll_settings=self.config.poll_settings,
            sleep=self.sleep,
            clock=self.clock,
        )
        self.sweeper = RetentionSweeper(
            gateway=self.gateway,
            region=self.config.target_region,
            policy=self.config.retention_policy,
        )

    def run(self) -> BackupSummary:
        results = self.backup_groups()
        sweep = self.sweep()
        summary = BackupSummary.from_results(results, sweep)
        logger.info(f"Backup run finished with status {summary.status.value}")
        return summary

    def run_sweep_only(self) -> BackupSummary:
        return BackupSummary.from_results([], self.sweep())

    def backup_groups(self) -> List[GroupBackupResult]:
        results: List[GroupBackupResult] = []
        group_names = self.config.scaling_group_names
        for i, group_name in enumerate(group_names, start=1):
            logger.info(f"Processing scaling group {group_name} ({i}/{len(group_names)})")
            try:
                result = self.pipeline.run(group_name)
            except Exception as e:
                logger.error(f"Unexpected error processing {group_name}: {e}", exc_info=True)
                result = GroupBackupResult.failed(group_name, reason=f"{type(e).__name__}: {e}")
            logger.info(f"Scaling group {group_name}: {result.outcome.value}")
            results.append(result)
        return results

    def sweep(self) -> SweepResult:
        try:
            result = self.sweeper.sweep(current_time=self.clock())
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}", exc_info=True)
            return SweepResult(errors=[f"{type(e).__name__}: {e}"])
        logger.info(
            f"Retention sweep removed {result.images_deleted} images and "
            f"{result.snapshots_deleted} snapshots, retained {result.retained_image_count}"
        )
        return result
