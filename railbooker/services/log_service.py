"""
Logging setup and the in-memory log buffer

configure_logging() wires the console (rich) and a rotating log file for
CLI runs. LogBuffer keeps the most recent workflow log entries in memory
for callers that poll instead of subscribing to events.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Deque, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOG_FILE_NAME = "railbooker.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


@dataclass(frozen=True)
class LogEntry:
    level: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LogBuffer:
    """Ring buffer of the most recent log entries"""

    def __init__(self, maxlen: int = 1000):
        self._entries: Deque[LogEntry] = deque(maxlen=maxlen)

    def append(self, entry: LogEntry):
        self._entries.append(entry)

    def get_logs(self, limit: Optional[int] = None) -> List[LogEntry]:
        """Most recent ``limit`` entries (all when None), oldest first"""
        entries = list(self._entries)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def configure_logging(verbose: bool = False, log_dir: Optional[Union[str, Path]] = None,
                      console: Optional[Console] = None) -> logging.Logger:
    """Attach rich console output and an optional rotating file to the package logger"""
    logger = logging.getLogger("railbooker")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    console_handler = RichHandler(console=console, rich_tracebacks=True, show_path=verbose)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path / LOG_FILE_NAME, maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))
        logger.addHandler(file_handler)

    # transitions logs every state change at info level
    logging.getLogger("transitions").setLevel(logging.WARNING)
    return logger
