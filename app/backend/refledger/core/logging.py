"""
Structured logging setup using structlog.
Every module logs through structlog on top of the stdlib root logger.
"""

import sys
import logging
from typing import List, Optional
from pathlib import Path

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, get_settings

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("aiohttp", "aiogram", "asyncio", "google.auth", "urllib3")


def _processors(json_output: bool) -> list:
    renderer = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def _handlers(settings: Settings, level: int, log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    plain = logging.Formatter("%(message)s")

    if settings.is_development and settings.log_format != "json":
        console: logging.Handler = RichHandler(
            console=Console(file=sys.stderr),
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
        )
    else:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(plain)
    handlers.append(console)

    path = log_file or settings.log_file
    if path:
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(plain)
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(settings: Optional[Settings] = None, log_file: Optional[str] = None) -> None:
    """
    Configure structured logging for the process.

    Args:
        settings: Source of level, format and environment; defaults to get_settings()
        log_file: Optional log file path, overrides settings.log_file
    """
    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level)

    structlog.configure(
        processors=_processors(settings.log_format == "json"),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, handlers=_handlers(settings, level, log_file), force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
