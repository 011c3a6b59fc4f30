"""Process-level configuration for image backups.

Values are read from environment variables. Any value passed explicitly to
`ImageBackupConfig.load` takes precedence over the environment.
"""

__all__ = [
    "ImageBackupConfig",
    "SOURCE_REGION_ENV_VAR",
    "TARGET_REGION_ENV_VAR",
    "SCALING_GROUPS_ENV_VAR",
    "RETENTION_DAYS_ENV_VAR",
    "POLL_INTERVAL_SECONDS_ENV_VAR",
    "POLL_MAX_ATTEMPTS_ENV_VAR",
    "POLL_BACKOFF_RATE_ENV_VAR",
    "MANAGED_BY_TAG_KEY_ENV_VAR",
    "MANAGED_BY_ENV_VAR",
    "NO_REBOOT_ENV_VAR",
]

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, List, Optional, Sequence, TypeVar, Union

from aibs_informatics_aws_utils.core import get_region
from aibs_informatics_core.utils.os_operations import get_env_var

from aibs_informatics_image_backup.core.model import (
    DEFAULT_MANAGED_BY_TAG_KEY,
    DEFAULT_MANAGED_BY_TAG_VALUE,
    RetentionPolicy,
    TagSelector,
)
from aibs_informatics_image_backup.core.poller import (
    DEFAULT_POLL_BACKOFF_RATE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    PollSettings,
)
from aibs_informatics_image_backup.exceptions import ConfigurationError

SOURCE_REGION_ENV_VAR = "IMAGE_BACKUP_SOURCE_REGION"
TARGET_REGION_ENV_VAR = "IMAGE_BACKUP_TARGET_REGION"
SCALING_GROUPS_ENV_VAR = "IMAGE_BACKUP_SCALING_GROUPS"
RETENTION_DAYS_ENV_VAR = "IMAGE_BACKUP_RETENTION_DAYS"
POLL_INTERVAL_SECONDS_ENV_VAR = "IMAGE_BACKUP_POLL_INTERVAL_SECONDS"
POLL_MAX_ATTEMPTS_ENV_VAR = "IMAGE_BACKUP_POLL_MAX_ATTEMPTS"
POLL_BACKOFF_RATE_ENV_VAR = "IMAGE_BACKUP_POLL_BACKOFF_RATE"
MANAGED_BY_TAG_KEY_ENV_VAR = "IMAGE_BACKUP_MANAGED_BY_TAG_KEY"
MANAGED_BY_ENV_VAR = "IMAGE_BACKUP_MANAGED_BY"
NO_REBOOT_ENV_VAR = "IMAGE_BACKUP_NO_REBOOT"

DEFAULT_RETENTION_DAYS = 7.0

TRUTHY_VALUES = ("1", "true", "yes", "y", "on")
FALSY_VALUES = ("0", "false", "no", "n", "off")

T = TypeVar("T")


@dataclass
class ImageBackupConfig:
    source_region: str
    target_region: str
    scaling_group_names: List[str]
    retention_days: float = DEFAULT_RETENTION_DAYS
    poll_settings: PollSettings = field(default_factory=PollSettings)
    managed_by_tag_key: str = DEFAULT_MANAGED_BY_TAG_KEY
    managed_by: str = DEFAULT_MANAGED_BY_TAG_VALUE
    no_reboot: bool = True
    require_scaling_groups: bool = field(default=True, repr=False)

    def __post_init__(self):
        self.validate()

    @property
    def retention_period(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def selector(self) -> TagSelector:
        return TagSelector(key=self.managed_by_tag_key, value=self.managed_by)

    @property
    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(max_age=self.retention_period, selector=self.selector)

    def validate(self):
        if not self.source_region:
            raise ConfigurationError("A source region must be configured")
        if not self.target_region:
            raise ConfigurationError(
                f"A target region must be configured (set {TARGET_REGION_ENV_VAR})"
            )
        if self.source_region == self.target_region:
            raise ConfigurationError(
                f"Source and target regions must differ (both are {self.source_region})"
            )
        if self.require_scaling_groups and not self.scaling_group_names:
            raise ConfigurationError(
                f"At least one scaling group must be configured (set {SCALING_GROUPS_ENV_VAR})"
            )
        duplicates = sorted(
            {n for n in self.scaling_group_names if self.scaling_group_names.count(n) > 1}
        )
        if duplicates:
            raise ConfigurationError(f"Scaling groups are listed more than once: {duplicates}")
        if self.retention_days <= 0:
            raise ConfigurationError(
                f"Retention days must be positive, got {self.retention_days}"
            )
        if self.poll_settings.interval_seconds <= 0:
            raise ConfigurationError(
                f"Poll interval must be positive, got {self.poll_settings.interval_seconds}"
            )
        if self.poll_settings.max_attempts <= 0:
            raise ConfigurationError(
                f"Poll max attempts must be positive, got {self.poll_settings.max_attempts}"
            )
        if self.poll_settings.backoff_rate < 1:
            raise ConfigurationError(
                f"Poll backoff rate must be at least 1.0, got {self.poll_settings.backoff_rate}"
            )
        if not self.managed_by_tag_key or not self.managed_by:
            raise ConfigurationError("Managed-by tag key and value must be non-empty")

    @classmethod
    def load(
        cls,
        source_region: Optional[str] = None,
        target_region: Optional[str] = None,
        scaling_group_names: Optional[Union[str, Sequence[str]]] = None,
        retention_days: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
        poll_backoff_rate: Optional[float] = None,
        managed_by_tag_key: Optional[str] = None,
        managed_by: Optional[str] = None,
        no_reboot: Optional[bool] = None,
        require_scaling_groups: bool = True,
    ) -> "ImageBackupConfig":
        """Resolve configuration from explicit values, then environment, then defaults.

        Sweep-only runs pass `require_scaling_groups=False`.

        Raises:
            ConfigurationError: If a required value is missing or any value is invalid.
        """
        target_region = target_region or get_env_var(TARGET_REGION_ENV_VAR)
        source_region = (
            source_region or get_env_var(SOURCE_REGION_ENV_VAR) or cls._default_source_region()
        )
        if scaling_group_names is None:
            scaling_group_names = get_env_var(SCALING_GROUPS_ENV_VAR) or ""

        return cls(
            source_region=source_region,
            target_region=target_region,
            scaling_group_names=parse_group_names(scaling_group_names),
            retention_days=_resolve(
                retention_days, RETENTION_DAYS_ENV_VAR, float, DEFAULT_RETENTION_DAYS
            ),
            poll_settings=PollSettings(
                interval_seconds=_resolve(
                    poll_interval_seconds,
                    POLL_INTERVAL_SECONDS_ENV_VAR,
                    float,
                    DEFAULT_POLL_INTERVAL_SECONDS,
                ),
                max_attempts=_resolve(
                    poll_max_attempts, POLL_MAX_ATTEMPTS_ENV_VAR, int, DEFAULT_POLL_MAX_ATTEMPTS
                ),
                backoff_rate=_resolve(
                    poll_backoff_rate, POLL_BACKOFF_RATE_ENV_VAR, float, DEFAULT_POLL_BACKOFF_RATE
                ),
            ),
            managed_by_tag_key=(
                managed_by_tag_key
                or get_env_var(MANAGED_BY_TAG_KEY_ENV_VAR)
                or DEFAULT_MANAGED_BY_TAG_KEY
            ),
            managed_by=(
                managed_by or get_env_var(MANAGED_BY_ENV_VAR) or DEFAULT_MANAGED_BY_TAG_VALUE
            ),
            no_reboot=_resolve(no_reboot, NO_REBOOT_ENV_VAR, parse_bool, True),
            require_scaling_groups=require_scaling_groups,
        )

    @classmethod
    def _default_source_region(cls) -> Optional[str]:
        try:
            return get_region()
        except Exception as e:
            raise ConfigurationError(
                f"No source region configured (set {SOURCE_REGION_ENV_VAR}) "
                f"and no default region could be resolved: {e}"
            ) from e


def parse_group_names(value: Union[str, Sequence[str]]) -> List[str]:
    """Split a comma-separated group list, preserving order and dropping blanks."""
    names = value.split(",") if isinstance(value, str) else list(value)
    return [name.strip() for name in names if name and name.strip()]


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUTHY_VALUES:
        return True
    if normalized in FALSY_VALUES:
        return False
    raise ValueError(f"Cannot interpret {value!r} as a boolean")


def _resolve(explicit: Optional[T], env_var: str, parse: Callable[[Any], T], default: T) -> T:
    if explicit is not None:
        return explicit
    raw = get_env_var(env_var)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return parse(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}") from e
