"""Resource Gateway for EC2 images and Auto Scaling groups.

Every remote read or mutation used by the backup engine goes through `ImageGateway`.
Each method performs exactly one remote action (no retries, no backoff) and translates
provider errors into `ResourceNotFoundError` / `RemoteOperationFailedError`.
"""

__all__ = [
    "ImageGateway",
    "IN_SERVICE_LIFECYCLE_STATE",
    "parse_creation_time",
]

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Tuple, cast

import boto3
from aibs_informatics_core.utils.logging import get_logger
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from aibs_informatics_image_backup.core.model import (
    BackupTags,
    ImageState,
    Instance,
    MachineImage,
    TagSelector,
)
from aibs_informatics_image_backup.exceptions import (
    RemoteOperationFailedError,
    ResourceNotFoundError,
)

if TYPE_CHECKING:  # pragma: no cover
    from mypy_boto3_autoscaling import AutoScalingClient
    from mypy_boto3_ec2 import EC2Client
else:
    AutoScalingClient = BaseClient
    EC2Client = BaseClient

logger = get_logger(__name__)

IN_SERVICE_LIFECYCLE_STATE = "InService"

CREATION_DATE_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ")


def parse_creation_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an EC2 `CreationDate` (e.g. 2024-01-31T12:00:00.000Z) as an aware UTC datetime."""
    if not value:
        return None
    for fmt in CREATION_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@contextmanager
def remote_operation(operation: str, region: str) -> Iterator[None]:
    """Translate botocore errors raised inside the block into gateway errors."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(e))
        if code.endswith(".NotFound"):
            raise ResourceNotFoundError(
                f"{operation} in {region} failed: {code}: {message}"
            ) from e
        raise RemoteOperationFailedError(
            f"{operation} in {region} failed: {code}: {message}",
            operation=operation,
            region=region,
            error_code=code,
        ) from e
    except BotoCoreError as e:
        raise RemoteOperationFailedError(
            f"{operation} in {region} failed: {e}", operation=operation, region=region
        ) from e


@dataclass
class ImageGateway:
    """Thin wrapper over the EC2 and Auto Scaling APIs.

    Attributes:
        source_region: Region of the scaling groups and of newly created images.
        no_reboot: Create images without rebooting the instance.
        clients: Pre-built clients keyed by (service name, region). Missing clients
            are created with boto3 on first use and cached here.
    """

    source_region: str
    no_reboot: bool = True
    clients: Dict[Tuple[str, str], BaseClient] = field(default_factory=dict)

    def get_client(self, service: str, region: str) -> BaseClient:
        key = (service, region)
        if key not in self.clients:
            self.clients[key] = boto3.client(service, region_name=region)  # type: ignore
        return self.clients[key]

    def ec2(self, region: str) -> EC2Client:
        return cast(EC2Client, self.get_client("ec2", region))

    def autoscaling(self) -> AutoScalingClient:
        return cast(AutoScalingClient, self.get_client("autoscaling", self.source_region))

    # --------------------------------------------------------------------
    # Scaling groups and instances
    # --------------------------------------------------------------------

    def resolve_in_service_instance(self, group_name: str) -> str:
        """Return the id of the first in-service instance of a scaling group.

        Raises:
            ResourceNotFoundError: If the group does not exist or has no in-service instance.
        """
        with remote_operation("DescribeAutoScalingGroups", self.source_region):
            response = self.autoscaling().describe_auto_scaling_groups(
                AutoScalingGroupNames=[group_name]
            )
        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise ResourceNotFoundError(f"No scaling group found with name {group_name}")
        for instance in groups[0].get("Instances", []):
            if instance.get("LifecycleState") == IN_SERVICE_LIFECYCLE_STATE:
                return instance["InstanceId"]
        raise ResourceNotFoundError(f"No in-service instances found in scaling group {group_name}")

    def describe_instance(self, instance_id: str) -> Instance:
        with remote_operation("DescribeInstances", self.source_region):
            response = self.ec2(self.source_region).describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return Instance(
                    instance_id=instance["InstanceId"], image_id=instance.get("ImageId")
                )
        raise ResourceNotFoundError(f"Instance {instance_id} not found in {self.source_region}")

    # --------------------------------------------------------------------
    # Images
    # --------------------------------------------------------------------

    def create_image(
        self,
        instance_id: str,
        name: str,
        tags: BackupTags,
        description: Optional[str] = None,
    ) -> str:
        logger.info(f"Creating image {name} from instance {instance_id} in {self.source_region}")
        aws_tags = tags.to_aws_tags()
        with remote_operation("CreateImage", self.source_region):
            response = self.ec2(self.source_region).create_image(
                InstanceId=instance_id,
                Name=name,
                Description=description or name,
                NoReboot=self.no_reboot,
                TagSpecifications=[
                    {"ResourceType": "image", "Tags": aws_tags},  # type: ignore[list-item]
                    {"ResourceType": "snapshot", "Tags": aws_tags},  # type: ignore[list-item]
                ],
            )
        return response["ImageId"]

    def get_image(self, image_id: str, region: str) -> MachineImage:
        """Describe a single image.

        Raises:
            ResourceNotFoundError: If the image is not visible in the region.
        """
        with remote_operation("DescribeImages", region):
            response = self.ec2(region).describe_images(ImageIds=[image_id])
        images = response.get("Images", [])
        if not images:
            raise ResourceNotFoundError(f"Image {image_id} not found in {region}")
        return self._to_machine_image(images[0], region)

    def copy_image(
        self,
        image_id: str,
        source_region: str,
        target_region: str,
        name: str,
        tags: BackupTags,
        description: Optional[str] = None,
    ) -> str:
        logger.info(f"Copying image {image_id} from {source_region} to {target_region} as {name}")
        aws_tags = tags.to_aws_tags()
        with remote_operation("CopyImage", target_region):
            response = self.ec2(target_region).copy_image(
                SourceImageId=image_id,
                SourceRegion=source_region,
                Name=name,
                Description=description or name,
                TagSpecifications=[
                    {"ResourceType": "image", "Tags": aws_tags},  # type: ignore[list-item]
                    {"ResourceType": "snapshot", "Tags": aws_tags},  # type: ignore[list-item]
                ],
            )
        return response["ImageId"]

    def deregister_image(self, image_id: str, region: str) -> None:
        logger.info(f"Deregistering image {image_id} in {region}")
        with remote_operation("DeregisterImage", region):
            self.ec2(region).deregister_image(ImageId=image_id)

    def delete_snapshot(self, snapshot_id: str, region: str) -> None:
        logger.info(f"Deleting snapshot {snapshot_id} in {region}")
        with remote_operation("DeleteSnapshot", region):
            self.ec2(region).delete_snapshot(SnapshotId=snapshot_id)

    def list_managed_images(self, region: str, selector: TagSelector) -> List[MachineImage]:
        """List images owned by this account in `region` that carry the selector tag."""
        images: List[MachineImage] = []
        with remote_operation("DescribeImages", region):
            paginator = self.ec2(region).get_paginator("describe_images")
            for page in paginator.paginate(
                Owners=["self"], Filters=selector.to_filters()  # type: ignore[arg-type]
            ):
                images.extend(self._to_machine_image(image, region) for image in page["Images"])
        return images

    @classmethod
    def _to_machine_image(cls, image: Mapping[str, Any], region: str) -> MachineImage:
        return MachineImage(
            image_id=image["ImageId"],
            region=region,
            state=ImageState.from_provider_state(image.get("State")),
            name=image.get("Name"),
            creation_time=parse_creation_time(image.get("CreationDate")),
            snapshot_ids=[
                mapping["Ebs"]["SnapshotId"]
                for mapping in image.get("BlockDeviceMappings", [])
                if "SnapshotId" in mapping.get("Ebs", {})
            ],
            tags={tag["Key"]: tag["Value"] for tag in image.get("Tags", [])},
        )
