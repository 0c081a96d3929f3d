"""Logging setup for the engine and its CLI."""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

# Per-trial chatter from sampler worker threads
CHATTY_LOGGERS = ("evalgate.sampling",)


def configure_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    console_level: str = "INFO",
    chatty_loggers: Iterable[str] = CHATTY_LOGGERS,
) -> None:
    """
    Install console and optional file handlers on the root logger.

    Lifecycles run on pool threads, so every line carries the thread name
    next to the module, which keeps interleaved proposals readable.

    Args:
        log_file: Path to log file. If None, logs to console only.
        log_level: Logging level for file output (default: INFO)
        console_level: Logging level for console output (default: INFO)
        chatty_loggers: Loggers held at INFO or above even when the file
            level is DEBUG

    Example:
        >>> configure_logging(
        ...     log_file=Path("artifacts/evalgate/engine.log"),
        ...     log_level="DEBUG",
        ...     console_level="WARNING",
        ... )
    """
    file_log_level = getattr(logging, log_level.upper(), logging.INFO)
    console_log_level = getattr(logging, console_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(min(file_log_level, console_log_level) if log_file else console_log_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(threadName)-22s | %(name)-34s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stderr, so command output on stdout stays parseable
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in chatty_loggers:
        logging.getLogger(name).setLevel(max(logging.INFO, root_logger.level))

    root_logger.debug(
        f"Logging configured: console={console_level.upper()}, "
        f"file={log_file or '-'} ({log_level.upper()})"
    )
