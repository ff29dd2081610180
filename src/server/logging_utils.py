from __future__ import annotations

import logging
import sys
from typing import Any, Mapping, Optional, Sequence

from loguru import logger

_LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

# Chatty third-party loggers held at WARNING unless the root level is stricter.
QUIET_LOGGERS = ("absl", "sqlalchemy.engine", "multipart", "watchfiles")


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (FastAPI, SQLAlchemy, MediaPipe) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level_name = logger.level(record.levelname).name
        except ValueError:
            level_name = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level_name, record.getMessage())


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    quiet: Sequence[str] = QUIET_LOGGERS,
) -> None:
    """Configure Loguru sinks and bridge the standard logging module into them."""
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, format=_LOG_FORMAT, level=level, enqueue=True, backtrace=True, diagnose=False)
    if log_file:
        logger.add(log_file, format=_LOG_FORMAT, level=level, rotation="10 MB", retention=5, enqueue=True)
    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    root_level = logging.getLogger().level
    for name in quiet:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_level))


def configure_from_settings(log_cfg: Optional[Mapping[str, Any]]) -> None:
    """Apply the ``logging`` section of the runtime configuration."""
    log_cfg = log_cfg or {}
    configure_logging(str(log_cfg.get("level") or "INFO"), log_cfg.get("file"))
