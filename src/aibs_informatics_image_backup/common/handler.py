"""Strongly typed Lambda handler base class.

`LambdaHandler` subclasses declare their request and response models as type parameters
and implement `handle`. `get_handler()` turns the class into the plain
`(event, context) -> JSON` callable that AWS Lambda invokes.
"""

__all__ = [
    "LambdaEvent",
    "LambdaHandler",
    "LambdaHandlerType",
    "unwrap_eventbridge_event",
]

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from aibs_informatics_aws_utils.s3 import download_to_json_object, upload_json
from aibs_informatics_core.executors.base import BaseExecutor
from aibs_informatics_core.models.aws.s3 import S3URI
from aibs_informatics_core.models.base import ModelProtocol
from aibs_informatics_core.utils.json import JSON
from aws_lambda_powertools.utilities.typing import LambdaContext

from aibs_informatics_image_backup.common.base import HandlerMixins
from aibs_informatics_image_backup.common.logging import LoggingMixins
from aibs_informatics_image_backup.common.metrics import MetricsMixins

LambdaEvent = Union[JSON]  # type: ignore # https://github.com/python/mypy/issues/7866
LambdaHandlerType = Callable[[LambdaEvent, LambdaContext], Optional[JSON]]
logger = logging.getLogger(__name__)

REQUEST = TypeVar("REQUEST", bound=ModelProtocol)
RESPONSE = TypeVar("RESPONSE", bound=ModelProtocol)

EVENTBRIDGE_DETAIL_TYPE_KEY = "detail-type"
EVENTBRIDGE_DETAIL_KEY = "detail"


def unwrap_eventbridge_event(event: LambdaEvent) -> LambdaEvent:
    """Return the `detail` of an EventBridge event, or the event itself otherwise.

    Scheduled rules deliver an envelope such as
    `{"detail-type": "Scheduled Event", "source": "aws.events", "detail": {}, ...}`.
    """
    if isinstance(event, dict) and EVENTBRIDGE_DETAIL_TYPE_KEY in event:
        detail = event.get(EVENTBRIDGE_DETAIL_KEY)
        return detail if isinstance(detail, dict) else {}
    return event


@dataclass  # type: ignore[misc] # mypy #5374
class LambdaHandler(
    LoggingMixins,
    MetricsMixins,
    HandlerMixins,
    BaseExecutor[REQUEST, RESPONSE],
    Generic[REQUEST, RESPONSE],
):
    """Base class of the image backup Lambda handlers.

    Subclasses get Powertools structured logging (`self.log`), CloudWatch metrics
    (`self.metrics`) and request/response (de)serialization through their
    `SchemaModel` type parameters. Both direct invocations and EventBridge
    scheduled events are accepted.

    Example:
        ```python
        class SweepHandler(LambdaHandler[SweepRequest, SweepResponse]):
            def handle(self, request: SweepRequest) -> SweepResponse:
                ...

        sweep_handler = SweepHandler.get_handler()
        ```
    """

    def __post_init__(self):
        self.context = LambdaContext()
        super().__post_init__()

    @classmethod
    def load_input__remote(cls, remote_path: S3URI) -> JSON:
        """Download a JSON request stored in S3."""
        return download_to_json_object(remote_path)

    @classmethod
    def write_output__remote(cls, output: JSON, remote_path: S3URI) -> None:
        """Upload a JSON response to S3."""
        return upload_json(output, remote_path)

    @classmethod
    def deserialize_event(cls, event: LambdaEvent) -> REQUEST:
        """Build this handler's request from a raw Lambda event.

        EventBridge envelopes are unwrapped first, and a missing payload is
        treated as an empty request.
        """
        payload: Any = unwrap_eventbridge_event(event)
        return cls.deserialize_request(payload if payload is not None else {})

    @classmethod
    def get_handler(cls, *args, **kwargs) -> LambdaHandlerType:
        """Create the function AWS Lambda invokes for this handler class.

        A new handler instance is constructed from `args` and `kwargs` for every
        invocation, so state never leaks between invocations of a warm container.
        """

        logger = cls.get_logger(service=cls.service_name(), add_to_root=False)

        @logger.inject_lambda_context(log_event=True)
        def handler(event: LambdaEvent, context: LambdaContext) -> Optional[JSON]:
            lambda_handler = cls(*args, **kwargs)  # type: ignore[call-arg]
            lambda_handler.log = logger
            lambda_handler.context = context
            lambda_handler.add_logger_to_root()
            lambda_handler.log.info(f"Invoking {lambda_handler}")

            request = lambda_handler.deserialize_event(event)
            response = lambda_handler.handle(request=request)

            if not response:
                lambda_handler.log.info(f"{cls.handler_name()} returned no response")
                return None
            lambda_handler.log.info(f"{cls.handler_name()} returned {response}")
            return lambda_handler.serialize_response(response)

        return handler

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"request: {self.get_request_cls()}, "
            f"response: {self.get_response_cls()}"
            ")"
        )
