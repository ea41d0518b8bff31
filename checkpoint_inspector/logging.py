# checkpoint_inspector/logging.py
"""
Loguru setup for the CLI and the analysis worker thread.

Records carry the thread name so worker output ("analysis-worker") can be told
apart from the main thread. An optional file sink keeps full debug output
while the console stays at INFO.
"""
from __future__ import annotations

import sys
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "| <level>{level: <8}</level> "
    "| <magenta>{thread.name}</magenta> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> "
    "- <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process}:{thread.name} | {name}:{function}:{line} - {message}"


def configure_logging(*, debug: bool = False, log_file: Optional[str] = None) -> None:
    """Replace loguru's default sink.

    Args:
        debug: Console level DEBUG instead of INFO, with tracebacks annotated.
        log_file: Also write DEBUG records to this file (rotated at 10 MB).
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format=CONSOLE_FORMAT,
        enqueue=True,
        backtrace=debug,
        diagnose=debug,
    )
    if log_file:
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT, enqueue=True, rotation="10 MB", encoding="utf-8")
        logger.debug("Logging to {path}", path=log_file)
