"""Bounded wait-for-state polling."""

__all__ = [
    "PollSettings",
    "poll_until",
    "wait_for_image_available",
]

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

from aibs_informatics_core.utils.logging import get_logger

from aibs_informatics_image_backup.core.model import ImageState, MachineImage
from aibs_informatics_image_backup.exceptions import (
    PollFailedError,
    PollTimeoutError,
    ResourceNotFoundError,
)

if TYPE_CHECKING:  # pragma: no cover
    from aibs_informatics_image_backup.core.gateway import ImageGateway

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_POLL_MAX_ATTEMPTS = 40
DEFAULT_POLL_BACKOFF_RATE = 1.0
DEFAULT_POLL_MAX_INTERVAL_SECONDS = 300.0


@dataclass(frozen=True)
class PollSettings:
    """Polling bounds.

    Attributes:
        interval_seconds: Delay before the second attempt.
        max_attempts: Total number of status fetches before giving up.
        backoff_rate: Multiplier applied to the delay after every attempt.
            A rate of 1.0 polls at a fixed interval.
        max_interval_seconds: Upper bound for any single delay.
    """

    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    backoff_rate: float = DEFAULT_POLL_BACKOFF_RATE
    max_interval_seconds: float = DEFAULT_POLL_MAX_INTERVAL_SECONDS

    def delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) attempt."""
        return min(
            self.interval_seconds * (self.backoff_rate ** (attempt - 1)),
            self.max_interval_seconds,
        )


def poll_until(
    fetch: Callable[[], T],
    is_complete: Callable[[T], bool],
    is_failed: Optional[Callable[[T], bool]] = None,
    settings: Optional[PollSettings] = None,
    description: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Fetch a status repeatedly until it is complete, failed, or attempts run out.

    Args:
        fetch: Returns the current status.
        is_complete: True once the status is the desired terminal state.
        is_failed: True if the status is a terminal state that will never complete.
        settings: Interval and attempt bounds. Defaults to `PollSettings()`.
        description: Used in log and error messages.
        sleep: Delay function.

    Raises:
        PollFailedError: `is_failed` matched a fetched status.
        PollTimeoutError: `max_attempts` fetches happened without completion.

    Returns:
        The first status for which `is_complete` is true.
    """
    settings = settings or PollSettings()
    status: Optional[T] = None
    for attempt in range(1, settings.max_attempts + 1):
        status = fetch()
        if is_complete(status):
            logger.info(f"{description} reached terminal state after {attempt} attempt(s)")
            return status
        if is_failed is not None and is_failed(status):
            raise PollFailedError(
                f"{description} reached a failed state: {status}",
                last_status=status,
                attempts=attempt,
            )
        if attempt < settings.max_attempts:
            delay = settings.delay(attempt)
            logger.debug(
                f"{description} not ready (attempt {attempt}/{settings.max_attempts}). "
                f"Waiting {delay}s"
            )
            sleep(delay)
    raise PollTimeoutError(
        f"{description} did not reach terminal state after {settings.max_attempts} attempts. "
        f"Last status: {status}",
        last_status=status,
        attempts=settings.max_attempts,
    )


def wait_for_image_available(
    gateway: "ImageGateway",
    image_id: str,
    region: str,
    settings: Optional[PollSettings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MachineImage:
    """Poll an image until it is `available`.

    A freshly created or copied image may not be visible to DescribeImages for a short
    while; "not found" is treated as still pending.

    Raises:
        PollFailedError: The image entered the `failed` state.
        PollTimeoutError: The image was not available within the attempt budget.
    """

    def fetch() -> MachineImage:
        try:
            return gateway.get_image(image_id=image_id, region=region)
        except ResourceNotFoundError:
            logger.info(f"Image {image_id} is not yet visible in {region}")
            return MachineImage(image_id=image_id, region=region, state=ImageState.PENDING)

    return poll_until(
        fetch=fetch,
        is_complete=lambda image: image.state == ImageState.AVAILABLE,
        is_failed=lambda image: image.state == ImageState.FAILED,
        settings=settings,
        description=f"Image {image_id} ({region})",
        sleep=sleep,
    )
