"""
Logging for the consensus CLI.

stdout carries the signal, so log events go to stderr and, when LOG_FILE is
set, to a file as JSON lines. Fields bound with
structlog.contextvars.bound_contextvars (SignalService binds run_id and
symbol per run) are merged into every event, including events emitted from
the per-provider tasks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _formatter(*processors) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=PRE_CHAIN,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *processors],
    )


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return _formatter(structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer())


def _console_formatter(json_format: bool) -> structlog.stdlib.ProcessorFormatter:
    if json_format:
        return _json_formatter()
    return _formatter(structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=10),
    ))


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = False,
) -> None:
    """
    Route structlog and stdlib logging to stderr and an optional JSON file.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Append JSON lines here as well
        json_format: Render the stderr stream as JSON instead of console text
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_console_formatter(json_format))
    handlers: list[logging.Handler] = [console]

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(_json_formatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=PRE_CHAIN + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
