"""Image backup handler request and response models."""

__all__ = [
    "ImageBackupRequest",
    "ImageBackupResponse",
    "STATUS_OK",
    "STATUS_ERROR",
]

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from aibs_informatics_core.models.base import (
    BooleanField,
    FloatField,
    IntegerField,
    ListField,
    SchemaModel,
    StringField,
    custom_field,
)

from aibs_informatics_image_backup.core.model import BackupSummary

STATUS_OK = 200
STATUS_ERROR = 500


@dataclass
class ImageBackupRequest(SchemaModel):
    """Optional per-invocation overrides of the environment configuration.

    A scheduled invocation normally sends no fields at all; anything left unset is read
    from the `IMAGE_BACKUP_*` environment variables.
    """

    source_region: Optional[str] = custom_field(
        default=None, mm_field=StringField(allow_none=True)
    )
    target_region: Optional[str] = custom_field(
        default=None, mm_field=StringField(allow_none=True)
    )
    scaling_group_names: Optional[List[str]] = custom_field(
        default=None, mm_field=ListField(StringField(), allow_none=True)
    )
    retention_days: Optional[float] = custom_field(
        default=None, mm_field=FloatField(allow_none=True)
    )
    poll_interval_seconds: Optional[float] = custom_field(
        default=None, mm_field=FloatField(allow_none=True)
    )
    poll_max_attempts: Optional[int] = custom_field(
        default=None, mm_field=IntegerField(allow_none=True)
    )
    poll_backoff_rate: Optional[float] = custom_field(
        default=None, mm_field=FloatField(allow_none=True)
    )
    managed_by_tag_key: Optional[str] = custom_field(
        default=None, mm_field=StringField(allow_none=True)
    )
    managed_by: Optional[str] = custom_field(default=None, mm_field=StringField(allow_none=True))
    no_reboot: Optional[bool] = custom_field(default=None, mm_field=BooleanField(allow_none=True))

    def config_overrides(self) -> Dict[str, Any]:
        return {
            "source_region": self.source_region,
            "target_region": self.target_region,
            "scaling_group_names": self.scaling_group_names,
            "retention_days": self.retention_days,
            "poll_interval_seconds": self.poll_interval_seconds,
            "poll_max_attempts": self.poll_max_attempts,
            "poll_backoff_rate": self.poll_backoff_rate,
            "managed_by_tag_key": self.managed_by_tag_key,
            "managed_by": self.managed_by,
            "no_reboot": self.no_reboot,
        }


@dataclass
class ImageBackupResponse(SchemaModel):
    """Result envelope of a backup invocation.

    `status` is 200 whenever the run completed, even if individual groups failed
    (see `summary.status` and the per-group outcomes). It is 500 only if the run could
    not start, in which case `error` explains why.
    """

    status: int = custom_field(mm_field=IntegerField())
    summary: Optional[BackupSummary] = custom_field(
        default=None, mm_field=BackupSummary.as_mm_field()
    )
    error: Optional[str] = custom_field(default=None, mm_field=StringField(allow_none=True))

    @classmethod
    def ok(cls, summary: BackupSummary) -> "ImageBackupResponse":
        return cls(status=STATUS_OK, summary=summary)

    @classmethod
    def failed(cls, error: str) -> "ImageBackupResponse":
        return cls(status=STATUS_ERROR, error=error)
