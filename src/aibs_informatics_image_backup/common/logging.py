"""Logging utilities for the image backup Lambda handlers.

Handlers log through an AWS Lambda Powertools `Logger`. The handler's log handler is
also attached to the root logger, so the engine modules (which log through standard
library loggers) emit the same structured JSON records.
"""

import logging
from typing import Optional, Union

from aibs_informatics_core.utils.logging import get_all_handlers
from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.logging import Logger

from aibs_informatics_image_backup.common.base import SERVICE_NAME_ENV_VAR, HandlerMixins

SERVICE_NAME = "image-backup"


LOGGING_ATTR = "_logger"


class LoggingMixins(HandlerMixins):
    """Mixin class providing structured logging capabilities.

    Attributes:
        log: Alias for the logger property.
        logger: The AWS Lambda Powertools Logger instance.
    """

    @property
    def log(self) -> Logger:
        return self.logger

    @log.setter
    def log(self, value: Logger):
        self.logger = value

    @property
    def logger(self) -> Logger:
        """Get the Logger instance, creating a service logger on first access."""
        if not hasattr(self, LOGGING_ATTR):
            self.logger = self.get_logger(self.service_name())
        return getattr(self, LOGGING_ATTR)

    @logger.setter
    def logger(self, value: Logger):
        setattr(self, LOGGING_ATTR, value)

    @classmethod
    def get_logger(cls, service: Optional[str] = None, add_to_root: bool = False) -> Logger:
        """Create a new Logger instance.

        Args:
            service (Optional[str]): The service name for the logger. If None, uses default.
            add_to_root (bool): Whether to add the logger handler to the root logger.
        """
        return get_service_logger(service=service or SERVICE_NAME, add_to_root=add_to_root)

    def add_logger_to_root(self):
        """Route records of all other loggers (e.g. the backup engine) through this logger."""
        add_handler_to_logger(self.logger, None)


def get_service_logger(
    service: Optional[str] = None, child: bool = False, add_to_root: bool = False
) -> Logger:
    """Create a service logger with optional root logger integration.

    Args:
        service (Optional[str]): The service name for the logger. Defaults to
            `POWERTOOLS_SERVICE_NAME`, else `SERVICE_NAME`.
        child (bool): Whether to create a child logger.
        add_to_root (bool): Whether to add the logger handler to the root logger.

    Returns:
        A configured Logger instance for the service.
    """
    service_logger = Logger(
        service=service or get_env_var(SERVICE_NAME_ENV_VAR) or SERVICE_NAME, child=child
    )
    if add_to_root:
        add_handler_to_logger(service_logger)
    return service_logger


def add_handler_to_logger(
    source_logger: Logger, target_logger: Union[str, logging.Logger, None] = None
):
    """Add a source logger's handler to a target logger.

    Args:
        source_logger (Logger): The Logger whose handler will be copied.
        target_logger (Union[str, logging.Logger, None]): Logger name, Logger instance,
            or None for the root logger.
    """
    handler = source_logger.registered_handler

    if target_logger is None or isinstance(target_logger, str):
        target_logger = logging.getLogger(target_logger)
        log_level = min(source_logger.log_level, target_logger.getEffectiveLevel())
        target_logger.setLevel(log_level)

    # Handlers are compared by identity; a new Powertools Logger brings a new handler,
    # so one handler is added per Logger instance.
    if handler not in get_all_handlers(target_logger):
        target_logger.addHandler(handler)
