"""Invocation state shared by the logging and metrics mixins."""

from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.utilities.typing import LambdaContext

CONTEXT_ATTR = "_context"

SERVICE_NAME_ENV_VAR = "POWERTOOLS_SERVICE_NAME"


class HandlerMixins:
    """Holds the Lambda context of the current invocation and names the handler.

    The handler name is used as a metric dimension. The service name is used for
    the logger and the metrics `service` dimension.
    """

    @property
    def context(self) -> LambdaContext:
        if not hasattr(self, CONTEXT_ATTR):
            raise ValueError(f"No Lambda context has been set on {self.__class__.__name__}")
        return getattr(self, CONTEXT_ATTR)

    @context.setter
    def context(self, value: LambdaContext):
        setattr(self, CONTEXT_ATTR, value)

    @classmethod
    def handler_name(cls) -> str:
        return cls.__name__

    @classmethod
    def service_name(cls) -> str:
        """`POWERTOOLS_SERVICE_NAME` of the function if set, else the handler class name."""
        return get_env_var(SERVICE_NAME_ENV_VAR) or cls.__name__
