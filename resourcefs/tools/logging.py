import logging
import sys
from typing import Any, Dict

import structlog

from resourcefs.helpers.logging import TRACE_LEVEL


def custom_obj_renderer(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> Dict[Any, str]:
    """Simple str() serialization for the event dict values for purely aesthetic reasons"""
    return {key: str(value) for key, value in event_dict.items()}


def render_stacktrace_only_in_debug_or_less(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> Dict[Any, str]:
    """
    Render a stack trace of an exception only if `logger` is configured with `DEBUG` or lower level,
    otherwise render `str()` representation of an exception.
    """
    if event_dict.get("exc_info"):
        if logger.getEffectiveLevel() > logging.DEBUG:
            event_dict.pop("exc_info")
            _, exc, _ = sys.exc_info()
            event_dict["exc"] = str(exc)
    return event_dict


def configure_logging(verbose_value: int, be_quiet: bool) -> None:
    """Configure logging level for the `resourcefs` logger.

    By default, if `verbose_value` is not set (equals 0) and `be_quiet` is False,
    set logging level for the `resourcefs` logger to `WARNING`. Every additional
    `-v` lowers the level, down to `TRACE` at `-vvv`.

    If `be_quiet` is set to True, logging level is set to the least noisy `CRITICAL` level.
    """
    renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty(), pad_event=10)

    attr_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=(
            [
                structlog.stdlib.filter_by_level,
            ]
            + attr_processors
            + [
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                custom_obj_renderer,
                render_stacktrace_only_in_debug_or_less,
                # Wrapping is needed in order to use formatter down the line
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ]
        ),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # warnings issued by the ``warnings`` module will be
    # redirected to the ``py.warnings`` logger
    logging.captureWarnings(True)

    resourcefs_logger = logging.getLogger("resourcefs")

    if be_quiet:
        resourcefs_logger.setLevel(level=logging.CRITICAL)
    elif verbose_value == 0:
        resourcefs_logger.setLevel(level=logging.WARNING)
    elif verbose_value == 1:
        resourcefs_logger.setLevel(level=logging.INFO)
    elif verbose_value == 2:
        resourcefs_logger.setLevel(level=logging.DEBUG)
    elif verbose_value > 2:
        resourcefs_logger.setLevel(level=TRACE_LEVEL)

    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=attr_processors)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    # set handler on a root logger
    logging.getLogger().handlers = [handler]
