"""Logging setup for cephplan.

structlog on top of stdlib logging. Events are key/value pairs
(`logger.info("deployment reconciled", identity="0", action="created")`)
rendered for a terminal, or as one JSON object per line with `--json`.
Output goes to stderr so command output on stdout stays parseable.
"""

import logging
import sys
from pathlib import Path

import structlog

LEVELS = ("debug", "info", "warning", "error", "critical")


def verbosity_to_level(verbose: int, default: str = "warning") -> str:
    """Map a repeated -v count onto a log level name."""
    if verbose >= 2:
        return "debug"
    if verbose == 1:
        return "info"
    return default


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Route structlog events through stdlib logging.

    May be called more than once; the last call wins, including for
    loggers that have already logged, since bound loggers are not cached.

    Args:
        level: One of LEVELS; anything else means warning
        log_file: Write here instead of stderr
        json_output: Render events as JSON lines
    """
    log_level = getattr(logging, level.upper()) if level in LEVELS else logging.WARNING

    if log_file:
        handler: logging.Handler = logging.FileHandler(str(log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=not log_file and sys.stderr.isatty())
    )
    structlog.configure(
        processors=[*_shared_processors(), renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
