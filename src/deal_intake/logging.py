"""
Structured logging for the Deal Intake pipeline.

structlog is configured once on import (pretty console output); production
deployments call configure_logging(json_output=True). While an email is being
processed its intake ID and Message-ID are bound with logging_context() and
stamped onto every event, including events from the extractors and the
OpenAI client that never see the intake itself.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

from .config import config

_intake_id: ContextVar[str | None] = ContextVar('intake_id', default=None)
_message_id: ContextVar[str | None] = ContextVar('message_id', default=None)


def current_context() -> dict[str, str]:
    """Intake and message identifiers bound for the current task, if any."""
    bound = {'intake_id': _intake_id.get(), 'message_id': _message_id.get()}
    return {key: value for key, value in bound.items() if value}


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor that stamps the bound intake context onto log entries."""
    for key, value in current_context().items():
        event_dict.setdefault(key, value)
    return event_dict


def configure_logging(
    json_output: bool = False,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the pipeline.

    Args:
        json_output: JSON lines when True, colored console output otherwise
        log_level: Override log level (defaults to config.LOG_LEVEL)
    """
    level_num = getattr(logging, (log_level or config.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level_num)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(
    intake_id: str | None = None,
    message_id: str | None = None,
) -> Generator[None, None, None]:
    """
    Bind intake identifiers for the duration of a block.

    Usage:
        with logging_context(intake_id=str(intake.id), message_id=email.message_id):
            await pipeline.extract_email(...)  # events carry both IDs

    Identifiers left as None keep whatever an outer block bound.
    """
    tokens = [
        (var, var.set(value))
        for var, value in ((_intake_id, intake_id), (_message_id, message_id))
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class PipelineTimer:
    """
    Wall-clock durations of extraction stages, in milliseconds.

    Usage:
        timer = PipelineTimer()
        with timer.stage('rule_extraction'):
            ...
        logger.info('pipeline.extraction_complete', **timer.summary())
    """

    def __init__(self):
        self.started = time.perf_counter()
        self.stages: dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time one stage; a stage that raises is still recorded."""
        began = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - began) * 1000

    def summary(self) -> dict[str, Any]:
        return {
            'total_ms': round((time.perf_counter() - self.started) * 1000, 2),
            'stages': {name: round(ms, 2) for name, ms in self.stages.items()},
        }


configure_logging(json_output=False)
