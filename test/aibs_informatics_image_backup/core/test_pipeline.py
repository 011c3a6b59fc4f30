from test.aibs_informatics_image_backup.fakes import FIXED_NOW, FakeImageGateway
from test.base import BaseTest

from aibs_informatics_image_backup.core.model import BackupOutcome, ImageState
from aibs_informatics_image_backup.core.pipeline import ImagePipeline
from aibs_informatics_image_backup.core.poller import PollSettings
from aibs_informatics_image_backup.exceptions import RemoteOperationFailedError

SOURCE = "us-east-1"
TARGET = "us-west-2"


class ImagePipelineTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.gateway = FakeImageGateway(source_region=SOURCE, snapshots_per_image=2)
        self.sleeps = []
        self.pipeline = ImagePipeline(
            gateway=self.gateway,
            target_region=TARGET,
            poll_settings=PollSettings(interval_seconds=1, max_attempts=3),
            sleep=self.sleeps.append,
            clock=lambda: FIXED_NOW,
        )

    def test__run__success_relocates_image_to_target(self):
        instance_id = self.gateway.add_in_service_group("web-fleet")

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.SUCCESS)
        self.assertEqual(result.instance_id, instance_id)
        self.assertIsNone(result.reason)

        # Only the copy remains, in the target region, with its own snapshots
        self.assertListEqual(self.gateway.images_in(SOURCE), [])
        (replica,) = self.gateway.images_in(TARGET)
        self.assertEqual(replica.image_id, result.replica_image_id)
        self.assertEqual(replica.name, "web-fleet-Copy-2024-03-15")
        self.assertEqual(replica.state, ImageState.AVAILABLE)
        self.assertDictEqual(
            replica.tags,
            {
                "ManagedBy": "ImageBackupAutomation",
                "ScalingGroup": "web-fleet",
                "BackupDate": "2024-03-15",
                "SourceImageId": result.backup_image_id,
            },
        )
        self.assertEqual(len(result.deleted_snapshot_ids), 2)
        self.assertSetEqual(self.gateway.snapshots_in(SOURCE), set())
        self.assertSetEqual(self.gateway.snapshots_in(TARGET), set(replica.snapshot_ids))

    def test__run__steps_run_in_order(self):
        self.gateway.add_in_service_group("web-fleet")

        result = self.pipeline.run("web-fleet")

        operations = [op for op, _ in self.gateway.calls if op != "get_image"]
        self.assertListEqual(
            operations,
            [
                "resolve_in_service_instance",
                "describe_instance",
                "create_image",
                "copy_image",
                "deregister_image",
                "delete_snapshot",
                "delete_snapshot",
            ],
        )
        # The copy is confirmed available before the source is deregistered
        replica_polls = [
            i
            for i, (op, resource_id) in enumerate(self.gateway.calls)
            if op == "get_image" and resource_id == result.replica_image_id
        ]
        deregister_index = self.gateway.calls.index(("deregister_image", result.backup_image_id))
        self.assertLess(max(replica_polls), deregister_index)

    def test__run__group_without_in_service_instance_is_skipped(self):
        self.gateway.add_group("web-fleet", ("i-1", "Pending"), ("i-2", "Terminating"))

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.SKIPPED)
        self.assertIn("web-fleet", result.reason)
        self.assertListEqual(self.gateway.called("create_image"), [])

    def test__run__unknown_group_is_skipped(self):
        result = self.pipeline.run("missing-fleet")

        self.assertEqual(result.outcome, BackupOutcome.SKIPPED)
        self.assertListEqual(list(self.gateway.images), [])

    def test__run__create_failure_is_recorded(self):
        self.gateway.add_in_service_group("web-fleet")
        self.gateway.fail(
            "create_image", RemoteOperationFailedError("throttled", error_code="Throttling")
        )

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.FAILED)
        self.assertTrue(result.reason.startswith("RemoteOperationFailedError: "))
        self.assertIn("throttled", result.reason)
        self.assertIsNone(result.backup_image_id)
        self.assertListEqual(self.gateway.called("copy_image"), [])

    def test__run__failed_copy_keeps_source_image(self):
        self.gateway.add_in_service_group("web-fleet")
        self.gateway.final_states[TARGET] = ImageState.FAILED

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.FAILED)
        self.assertIn("PollFailedError", result.reason)
        self.assertIsNotNone(result.replica_image_id)
        (source_image,) = self.gateway.images_in(SOURCE)
        self.assertEqual(source_image.image_id, result.backup_image_id)
        self.assertListEqual(self.gateway.called("deregister_image"), [])
        self.assertListEqual(self.gateway.called("delete_snapshot"), [])

    def test__run__backup_timeout_stops_before_copy(self):
        self.gateway.add_in_service_group("web-fleet")
        self.gateway.pending_polls = 10

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.FAILED)
        self.assertIn("PollTimeoutError", result.reason)
        self.assertIsNone(result.replica_image_id)
        self.assertListEqual(self.gateway.called("copy_image"), [])
        self.assertEqual(len(self.gateway.images_in(SOURCE)), 1)
        # max_attempts=3 means two sleeps before giving up on the backup image
        self.assertListEqual(self.sleeps, [1, 1])

    def test__run__snapshot_failure_is_recorded_after_deregister(self):
        self.gateway.add_in_service_group("web-fleet")
        self.gateway.fail("delete_snapshot", RemoteOperationFailedError("denied"))

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.FAILED)
        self.assertIsNotNone(result.replica_image_id)
        self.assertListEqual(self.gateway.images_in(SOURCE), [])
        self.assertListEqual(result.deleted_snapshot_ids, [])

    def test__run__same_day_rerun_fails_on_duplicate_name(self):
        self.gateway.add_in_service_group("web-fleet")
        self.gateway.add_image(
            SOURCE, {}, creation_time=FIXED_NOW, name="web-fleet-Backup-2024-03-15"
        )

        result = self.pipeline.run("web-fleet")

        self.assertEqual(result.outcome, BackupOutcome.FAILED)
        self.assertIn("already in use", result.reason)
