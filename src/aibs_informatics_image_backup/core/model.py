"""Domain models for image backups.

Contains the provider-facing resource models (instances, images), the tag schema and
naming function used for every image this system creates, the retention policy, and
the per-group / per-sweep result models returned to callers.
"""

__all__ = [
    "ImageState",
    "Instance",
    "MachineImage",
    "TagSelector",
    "BackupTags",
    "ImageNaming",
    "RetentionPolicy",
    "BackupOutcome",
    "BackupStatus",
    "GroupBackupResult",
    "SweepResult",
    "BackupSummary",
    "BACKUP_DATE_TAG_KEY",
    "SCALING_GROUP_TAG_KEY",
    "SOURCE_IMAGE_ID_TAG_KEY",
    "DEFAULT_MANAGED_BY_TAG_KEY",
    "DEFAULT_MANAGED_BY_TAG_VALUE",
]

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from aibs_informatics_core.models.base import (
    EnumField,
    IntegerField,
    ListField,
    SchemaModel,
    StringField,
    custom_field,
)

DEFAULT_MANAGED_BY_TAG_KEY = "ManagedBy"
DEFAULT_MANAGED_BY_TAG_VALUE = "ImageBackupAutomation"

SCALING_GROUP_TAG_KEY = "ScalingGroup"
BACKUP_DATE_TAG_KEY = "BackupDate"
SOURCE_IMAGE_ID_TAG_KEY = "SourceImageId"

DATE_FORMAT = "%Y-%m-%d"


class ImageState(str, Enum):
    PENDING = "pending"
    AVAILABLE = "available"
    FAILED = "failed"

    @classmethod
    def from_provider_state(cls, state: Optional[str]) -> "ImageState":
        """Normalize an EC2 image state into one of the three states we act on.

        `available` and `pending` map through, states that can never become available
        (`failed`, `deregistered`, `invalid`, `error`) map to FAILED, and anything else
        (e.g. `transient`, `disabled`) is treated as still PENDING.
        """
        if state == "available":
            return cls.AVAILABLE
        if state in ("failed", "deregistered", "invalid", "error"):
            return cls.FAILED
        return cls.PENDING


@dataclass(frozen=True)
class Instance:
    instance_id: str
    image_id: Optional[str] = None


@dataclass
class MachineImage:
    image_id: str
    region: str
    state: ImageState
    name: Optional[str] = None
    creation_time: Optional[datetime] = None
    snapshot_ids: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def is_available(self) -> bool:
        return self.state == ImageState.AVAILABLE

    def age(self, current_time: datetime) -> Optional[timedelta]:
        if self.creation_time is None:
            return None
        return current_time - self.creation_time


@dataclass(frozen=True)
class TagSelector:
    """Selects images whose tag `key` equals `value`."""

    key: str
    value: str

    def matches(self, tags: Dict[str, str]) -> bool:
        return tags.get(self.key) == self.value

    def to_filters(self) -> List[Dict[str, object]]:
        return [{"Name": f"tag:{self.key}", "Values": [self.value]}]


@dataclass(frozen=True)
class BackupTags:
    """Typed tag set attached to every image (and snapshot) created by a backup run."""

    managed_by_key: str
    managed_by: str
    scaling_group: str
    backup_date: date
    source_image_id: Optional[str] = None

    @property
    def selector(self) -> TagSelector:
        return TagSelector(key=self.managed_by_key, value=self.managed_by)

    def with_source_image(self, source_image_id: str) -> "BackupTags":
        return BackupTags(
            managed_by_key=self.managed_by_key,
            managed_by=self.managed_by,
            scaling_group=self.scaling_group,
            backup_date=self.backup_date,
            source_image_id=source_image_id,
        )

    def to_dict(self) -> Dict[str, str]:
        tags = {
            self.managed_by_key: self.managed_by,
            SCALING_GROUP_TAG_KEY: self.scaling_group,
            BACKUP_DATE_TAG_KEY: self.backup_date.strftime(DATE_FORMAT),
        }
        if self.source_image_id:
            tags[SOURCE_IMAGE_ID_TAG_KEY] = self.source_image_id
        return tags

    def to_aws_tags(self) -> List[Dict[str, str]]:
        return [{"Key": k, "Value": v} for k, v in self.to_dict().items()]


class ImageNaming:
    """Deterministic names for backup images.

    Names exist for operators browsing the console. Nothing in this package selects
    images by name; selection is always done by tags.
    """

    BACKUP_INFIX = "Backup"
    COPY_INFIX = "Copy"

    @classmethod
    def backup_name(cls, group_name: str, backup_date: date) -> str:
        return f"{group_name}-{cls.BACKUP_INFIX}-{backup_date.strftime(DATE_FORMAT)}"

    @classmethod
    def copy_name(cls, group_name: str, backup_date: date) -> str:
        return f"{group_name}-{cls.COPY_INFIX}-{backup_date.strftime(DATE_FORMAT)}"

    @classmethod
    def backup_description(cls, group_name: str, instance_id: str) -> str:
        return f"Backup of {group_name} instance {instance_id}"

    @classmethod
    def copy_description(cls, group_name: str, image_id: str, source_region: str) -> str:
        return f"Copy of {group_name} backup {image_id} from {source_region}"


@dataclass(frozen=True)
class RetentionPolicy:
    max_age: timedelta
    selector: TagSelector

    def is_expired(self, image: MachineImage, current_time: datetime) -> bool:
        """True only if the image is older than `max_age` (equal age is retained)."""
        age = image.age(current_time)
        return age is not None and age > self.max_age


# ----------------------------------------------------------
# Result Models
# ----------------------------------------------------------


class BackupOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class BackupStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    FAILED = "FAILED"


@dataclass
class GroupBackupResult(SchemaModel):
    """Outcome of running the image pipeline for one scaling group.

    Attributes:
        group_name: The scaling group processed.
        outcome: SUCCESS, SKIPPED or FAILED.
        reason: Why the group was skipped or failed.
        instance_id: The in-service instance the backup was taken from.
        backup_image_id: The image created in the source region.
        replica_image_id: The copy created in the target region.
        deleted_snapshot_ids: Source-region snapshots removed after the copy completed.
    """

    group_name: str = custom_field(mm_field=StringField())
    outcome: BackupOutcome = custom_field(mm_field=EnumField(BackupOutcome))
    reason: Optional[str] = custom_field(default=None, mm_field=StringField(allow_none=True))
    instance_id: Optional[str] = custom_field(default=None, mm_field=StringField(allow_none=True))
    backup_image_id: Optional[str] = custom_field(
        default=None, mm_field=StringField(allow_none=True)
    )
    replica_image_id: Optional[str] = custom_field(
        default=None, mm_field=StringField(allow_none=True)
    )
    deleted_snapshot_ids: List[str] = custom_field(
        default_factory=list, mm_field=ListField(StringField())
    )

    @classmethod
    def skipped(cls, group_name: str, reason: str) -> "GroupBackupResult":
        return cls(group_name=group_name, outcome=BackupOutcome.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, group_name: str, reason: str, **kwargs) -> "GroupBackupResult":
        return cls(group_name=group_name, outcome=BackupOutcome.FAILED, reason=reason, **kwargs)


@dataclass
class SweepResult(SchemaModel):
    deleted_image_ids: List[str] = custom_field(
        default_factory=list, mm_field=ListField(StringField())
    )
    deleted_snapshot_ids: List[str] = custom_field(
        default_factory=list, mm_field=ListField(StringField())
    )
    retained_image_count: int = custom_field(default=0, mm_field=IntegerField())
    errors: List[str] = custom_field(default_factory=list, mm_field=ListField(StringField()))

    @property
    def images_deleted(self) -> int:
        return len(self.deleted_image_ids)

    @property
    def snapshots_deleted(self) -> int:
        return len(self.deleted_snapshot_ids)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class BackupSummary(SchemaModel):
    status: BackupStatus = custom_field(mm_field=EnumField(BackupStatus))
    groups: List[GroupBackupResult] = custom_field(
        default_factory=list, mm_field=ListField(GroupBackupResult.as_mm_field())
    )
    sweep: SweepResult = custom_field(
        default_factory=SweepResult, mm_field=SweepResult.as_mm_field()
    )

    @classmethod
    def from_results(cls, groups: List[GroupBackupResult], sweep: SweepResult) -> "BackupSummary":
        attempted = [g for g in groups if g.outcome != BackupOutcome.SKIPPED]
        failed = [g for g in attempted if g.outcome == BackupOutcome.FAILED]
        if attempted and len(failed) == len(attempted):
            status = BackupStatus.FAILED
        elif failed or not sweep.success:
            status = BackupStatus.PARTIAL_FAILURE
        else:
            status = BackupStatus.SUCCEEDED
        return cls(status=status, groups=list(groups), sweep=sweep)

    def groups_with_outcome(self, outcome: BackupOutcome) -> List[GroupBackupResult]:
        return [g for g in self.groups if g.outcome == outcome]
