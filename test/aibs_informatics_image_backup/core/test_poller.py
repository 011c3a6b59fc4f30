from test.aibs_informatics_image_backup.fakes import FIXED_NOW, FakeImageGateway
from typing import List

import pytest

from aibs_informatics_image_backup.core.model import BackupTags, ImageState
from aibs_informatics_image_backup.core.poller import (
    PollSettings,
    poll_until,
    wait_for_image_available,
)
from aibs_informatics_image_backup.exceptions import (
    PollFailedError,
    PollTimeoutError,
    RemoteOperationFailedError,
)


TAGS = BackupTags("ManagedBy", "ImageBackupAutomation", "web-fleet", FIXED_NOW.date())


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float):
        self.delays.append(seconds)


def statuses(*values: str):
    it = iter(values)
    return lambda: next(it)


def test__poll_until__returns_first_complete_status():
    sleep = RecordingSleep()
    result = poll_until(
        fetch=statuses("pending", "pending", "available"),
        is_complete=lambda s: s == "available",
        settings=PollSettings(interval_seconds=2, max_attempts=5),
        sleep=sleep,
    )
    assert result == "available"
    assert sleep.delays == [2, 2]


def test__poll_until__raises_failed_on_terminal_failure():
    sleep = RecordingSleep()
    with pytest.raises(PollFailedError) as exc_info:
        poll_until(
            fetch=statuses("pending", "failed", "available"),
            is_complete=lambda s: s == "available",
            is_failed=lambda s: s == "failed",
            settings=PollSettings(interval_seconds=1, max_attempts=5),
            sleep=sleep,
        )
    assert exc_info.value.last_status == "failed"
    assert exc_info.value.attempts == 2
    assert sleep.delays == [1]


def test__poll_until__raises_timeout_after_max_attempts_without_trailing_sleep():
    sleep = RecordingSleep()
    fetches = []

    def fetch():
        fetches.append(1)
        return "pending"

    with pytest.raises(PollTimeoutError) as exc_info:
        poll_until(
            fetch=fetch,
            is_complete=lambda s: s == "available",
            settings=PollSettings(interval_seconds=1, max_attempts=3),
            sleep=sleep,
        )
    assert len(fetches) == 3
    assert sleep.delays == [1, 1]
    assert exc_info.value.last_status == "pending"
    assert exc_info.value.attempts == 3


def test__poll_until__applies_backoff_with_cap():
    sleep = RecordingSleep()
    with pytest.raises(PollTimeoutError):
        poll_until(
            fetch=lambda: "pending",
            is_complete=lambda s: s == "available",
            settings=PollSettings(
                interval_seconds=1, max_attempts=5, backoff_rate=2.0, max_interval_seconds=5
            ),
            sleep=sleep,
        )
    assert sleep.delays == [1, 2, 4, 5]


def test__poll_until__fetch_errors_propagate():
    def fetch():
        raise RemoteOperationFailedError("throttled")

    with pytest.raises(RemoteOperationFailedError):
        poll_until(fetch=fetch, is_complete=lambda s: True, sleep=RecordingSleep())


def test__wait_for_image_available__waits_until_available():
    gateway = FakeImageGateway(pending_polls=2)
    image_id = gateway._new_image("us-east-1", "web-fleet-Backup-2024-03-15", TAGS).image_id
    sleep = RecordingSleep()

    image = wait_for_image_available(
        gateway, image_id, "us-east-1", PollSettings(interval_seconds=3, max_attempts=5), sleep
    )

    assert image.state == ImageState.AVAILABLE
    assert sleep.delays == [3, 3]


def test__wait_for_image_available__not_found_counts_as_pending():
    gateway = FakeImageGateway()
    sleep = RecordingSleep()

    with pytest.raises(PollTimeoutError) as exc_info:
        wait_for_image_available(
            gateway,
            "ami-missing",
            "us-west-2",
            PollSettings(interval_seconds=1, max_attempts=2),
            sleep,
        )
    assert exc_info.value.last_status.state == ImageState.PENDING
    assert gateway.called("get_image") == ["ami-missing", "ami-missing"]


def test__wait_for_image_available__failed_image_raises():
    gateway = FakeImageGateway(pending_polls=0, final_states={"us-west-2": ImageState.FAILED})
    image_id = gateway._new_image("us-west-2", "web-fleet-Copy-2024-03-15", TAGS).image_id

    with pytest.raises(PollFailedError):
        wait_for_image_available(
            gateway,
            image_id,
            "us-west-2",
            PollSettings(interval_seconds=1, max_attempts=5),
            RecordingSleep(),
        )
