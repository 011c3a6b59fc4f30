"""Age based retention for managed images."""

__all__ = [
    "RetentionSweeper",
]

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from aibs_informatics_core.utils.logging import get_logger
from aibs_informatics_core.utils.time import get_current_time

from aibs_informatics_image_backup.core.gateway import ImageGateway
from aibs_informatics_image_backup.core.model import MachineImage, RetentionPolicy, SweepResult
from aibs_informatics_image_backup.exceptions import ImageBackupError

logger = get_logger(__name__)


@dataclass
class RetentionSweeper:
    """Deletes managed images older than the retention threshold, with their snapshots.

    Only images matching the policy selector are ever considered. The selector is applied
    by the provider-side filter and checked again here before anything is deleted.
    """

    gateway: ImageGateway
    region: str
    policy: RetentionPolicy

    def sweep(self, current_time: Optional[datetime] = None) -> SweepResult:
        current_time = current_time or get_current_time()
        result = SweepResult()

        try:
            images = self.gateway.list_managed_images(self.region, self.policy.selector)
        except ImageBackupError as e:
            logger.warning(f"Could not list managed images in {self.region}: {e}")
            result.errors.append(str(e))
            return result

        logger.info(
            f"Found {len(images)} managed images in {self.region}. "
            f"Removing those older than {self.policy.max_age}"
        )
        for image in images:
            if not self.policy.selector.matches(image.tags):
                logger.warning(
                    f"Ignoring {image.image_id}: tags {image.tags} do not match "
                    f"{self.policy.selector}"
                )
                continue
            if not self.policy.is_expired(image, current_time):
                result.retained_image_count += 1
                continue
            self._delete(image, result)
        return result

    def _delete(self, image: MachineImage, result: SweepResult):
        logger.info(
            f"Removing expired image {image.image_id} ({image.name}, {image.creation_time})"
        )
        try:
            self.gateway.deregister_image(image.image_id, self.region)
        except ImageBackupError as e:
            logger.warning(f"Could not deregister {image.image_id}: {e}")
            result.errors.append(str(e))
            return
        result.deleted_image_ids.append(image.image_id)

        for snapshot_id in image.snapshot_ids:
            try:
                self.gateway.delete_snapshot(snapshot_id, self.region)
            except ImageBackupError as e:
                logger.warning(f"Could not delete snapshot {snapshot_id} of {image.image_id}: {e}")
                result.errors.append(str(e))
            else:
                result.deleted_snapshot_ids.append(snapshot_id)
