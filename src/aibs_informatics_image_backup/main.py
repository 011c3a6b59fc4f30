"""Run the image backup handlers outside of AWS Lambda.

Example:
    image-backup --payload '{"scaling_group_names": ["web-fleet"]}'
    image-backup --sweep-only --response-location s3://bucket/sweep.json
"""

import argparse
import json
from pathlib import Path
from typing import List, Optional

from aibs_informatics_core.models.aws.s3 import S3URI
from aibs_informatics_core.utils.json import JSON
from aibs_informatics_core.utils.os_operations import get_env_var

from aibs_informatics_image_backup.common.handler import LambdaHandler, LambdaHandlerType
from aibs_informatics_image_backup.common.logging import get_service_logger
from aibs_informatics_image_backup.common.models import DefaultLambdaContext
from aibs_informatics_image_backup.handlers.image_backup.operations import (
    ImageBackupHandler,
    RetentionSweepHandler,
)

logger = get_service_logger()

IMAGE_BACKUP_EVENT_PAYLOAD_KEY = "IMAGE_BACKUP_EVENT_PAYLOAD"
IMAGE_BACKUP_RESPONSE_LOCATION_KEY = "IMAGE_BACKUP_RESPONSE_LOCATION"


def get_lambda_handler(sweep_only: bool = False) -> LambdaHandlerType:
    return (RetentionSweepHandler if sweep_only else ImageBackupHandler).get_handler()


def handle(payload: JSON, sweep_only: bool = False) -> Optional[JSON]:
    return get_lambda_handler(sweep_only)(payload, DefaultLambdaContext())


def write_response(response: Optional[JSON], response_location: str):
    content = response if response is not None else {}
    if response_location.startswith("s3://"):
        logger.info(f"Uploading response to {response_location}")
        LambdaHandler.write_output__remote(content, S3URI(response_location))
        return
    path = Path(response_location)
    if path.is_dir():
        raise ValueError(f"Response location {path} is a directory")
    logger.info(f"Writing response to {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(content))


def handle_cli(args: Optional[List[str]] = None) -> Optional[JSON]:
    parser = argparse.ArgumentParser(description="Back up scaling group images across regions")
    parser.add_argument(
        "--payload",
        "-p",
        default=get_env_var(IMAGE_BACKUP_EVENT_PAYLOAD_KEY),
        help="JSON request overriding the IMAGE_BACKUP_* environment configuration",
    )
    parser.add_argument(
        "--sweep-only",
        action="store_true",
        help="Only remove expired managed images from the target region",
    )
    parser.add_argument(
        "--response-location",
        "-o",
        default=get_env_var(IMAGE_BACKUP_RESPONSE_LOCATION_KEY),
        help="Local path or s3:// URI to write the JSON response to",
    )
    parsed = parser.parse_args(args)

    try:
        payload = json.loads(parsed.payload) if parsed.payload else {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Payload is not valid JSON: {parsed.payload}") from e

    response = handle(payload, sweep_only=parsed.sweep_only)
    if parsed.response_location:
        write_response(response, parsed.response_location)
    else:
        print(json.dumps(response, indent=2))
    return response


def main():
    handle_cli()


if __name__ == "__main__":
    main()
