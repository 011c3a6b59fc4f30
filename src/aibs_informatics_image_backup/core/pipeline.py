"""Per scaling group backup pipeline.

resolve instance -> create image -> wait available -> copy to target region
-> wait available -> deregister source image -> delete source snapshots
"""

__all__ = [
    "ImagePipeline",
]

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from aibs_informatics_core.utils.logging import get_logger
from aibs_informatics_core.utils.time import get_current_time

from aibs_informatics_image_backup.core.gateway import ImageGateway
from aibs_informatics_image_backup.core.model import (
    DEFAULT_MANAGED_BY_TAG_KEY,
    DEFAULT_MANAGED_BY_TAG_VALUE,
    BackupOutcome,
    BackupTags,
    GroupBackupResult,
    ImageNaming,
)
from aibs_informatics_image_backup.core.poller import PollSettings, wait_for_image_available
from aibs_informatics_image_backup.exceptions import ResourceNotFoundError

logger = get_logger(__name__)


@dataclass
class ImagePipeline:
    """Produces one image per scaling group and relocates it to the target region.

    The source-region image is only removed after the target-region copy has been
    confirmed `available`. Any failure stops the remaining steps for the group and
    leaves already created images in place.

    Attributes:
        gateway: Remote operations. Its `source_region` is where images are created.
        target_region: Region that receives the copy.
        managed_by_tag_key: Tag key marking images as owned by this system.
        managed_by: Tag value marking images as owned by this system.
        poll_settings: Bounds for the wait-for-available steps.
        sleep: Delay function used while polling.
        clock: Returns the current (UTC) time used for naming and tagging.
    """

    gateway: ImageGateway
    target_region: str
    managed_by_tag_key: str = DEFAULT_MANAGED_BY_TAG_KEY
    managed_by: str = DEFAULT_MANAGED_BY_TAG_VALUE
    poll_settings: PollSettings = field(default_factory=PollSettings)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = get_current_time

    @property
    def source_region(self) -> str:
        return self.gateway.source_region

    def run(self, group_name: str) -> GroupBackupResult:
        """Back up one scaling group.

        Returns:
            SKIPPED if the group has no in-service instance, SUCCESS once the copy is
            available and the source image and snapshots are removed, FAILED otherwise.
        """
        result = GroupBackupResult(group_name=group_name, outcome=BackupOutcome.SUCCESS)
        try:
            try:
                result.instance_id = self.gateway.resolve_in_service_instance(group_name)
            except ResourceNotFoundError as e:
                logger.info(f"Skipping {group_name}: {e}")
                return GroupBackupResult.skipped(group_name, reason=str(e))

            self._run_steps(group_name, result)
        except Exception as e:
            logger.error(f"Backup of {group_name} failed: {e}", exc_info=True)
            result.outcome = BackupOutcome.FAILED
            result.reason = f"{type(e).__name__}: {e}"
        return result

    def _run_steps(self, group_name: str, result: GroupBackupResult):
        assert result.instance_id is not None
        backup_date = self.clock().date()
        tags = BackupTags(
            managed_by_key=self.managed_by_tag_key,
            managed_by=self.managed_by,
            scaling_group=group_name,
            backup_date=backup_date,
        )

        instance = self.gateway.describe_instance(result.instance_id)
        logger.info(
            f"Backing up {group_name} from instance {instance.instance_id} "
            f"(launched from {instance.image_id})"
        )

        # Create the backup in the source region
        result.backup_image_id = self.gateway.create_image(
            instance_id=instance.instance_id,
            name=ImageNaming.backup_name(group_name, backup_date),
            tags=tags,
            description=ImageNaming.backup_description(group_name, instance.instance_id),
        )
        backup_image = wait_for_image_available(
            self.gateway,
            result.backup_image_id,
            self.source_region,
            settings=self.poll_settings,
            sleep=self.sleep,
        )

        # Copy to the target region and confirm the copy before touching the source
        result.replica_image_id = self.gateway.copy_image(
            image_id=backup_image.image_id,
            source_region=self.source_region,
            target_region=self.target_region,
            name=ImageNaming.copy_name(group_name, backup_date),
            tags=tags.with_source_image(backup_image.image_id),
            description=ImageNaming.copy_description(
                group_name, backup_image.image_id, self.source_region
            ),
        )
        wait_for_image_available(
            self.gateway,
            result.replica_image_id,
            self.target_region,
            settings=self.poll_settings,
            sleep=self.sleep,
        )

        # Image first, snapshots after
        self.gateway.deregister_image(backup_image.image_id, self.source_region)
        for snapshot_id in backup_image.snapshot_ids:
            self.gateway.delete_snapshot(snapshot_id, self.source_region)
            result.deleted_snapshot_ids.append(snapshot_id)

        logger.info(
            f"Backup of {group_name} complete: {result.replica_image_id} in {self.target_region}"
        )
