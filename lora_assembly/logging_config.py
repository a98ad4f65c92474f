"""Loguru-based logging configuration.

Provides:
- Colorized console output
- Optional rotating log file
- Intercept handler for standard logging compatibility (huggingface_hub, mlx-lm)

Environment Variables:
- LORA_ASSEMBLY_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
- LORA_ASSEMBLY_LOG_DIR: Log directory path. When unset, only the console sink is added.
"""

import logging
import os
import sys
from pathlib import Path

from loguru import logger

LOG_LEVEL = os.environ.get("LORA_ASSEMBLY_LOG_LEVEL", "INFO").upper()
LOG_DIR = os.environ.get("LORA_ASSEMBLY_LOG_DIR")

# Track if logging has been configured to avoid duplicate setup
_logging_configured = False


def initialize_logging() -> None:
    """Configure Loguru sinks and route standard logging through them.

    Safe to call multiple times; only the first call has an effect.
    Log files are rotated at 10 MB and retained for 7 days.
    """
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    logger.remove()

    logger.add(
        sys.stderr,
        level=LOG_LEVEL,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if LOG_DIR:
        log_dir = Path(LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "lora-assembly.log",
            level=LOG_LEVEL,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
            ),
            rotation="10 MB",
            retention="7 days",
        )

    intercept_standard_logging()


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record by forwarding to Loguru."""
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        # Find caller from where the logged message originated
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def intercept_standard_logging() -> None:
    """Redirect all standard logging to Loguru."""
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Suppress noisy third-party loggers
    for name in ["httpx", "httpcore", "huggingface_hub", "filelock"]:
        logging.getLogger(name).setLevel(logging.WARNING)
