"""
Append-only event log shared by the client components.

Each component accepts a ``session_logger(event, details)`` callable;
``EventLog.log`` is the usual one and writes lines such as::

    [2024-05-01 10:00:00] - SUBMISSION_QUEUED - id=exam1_user1_1714557600000
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

SessionLogger = Callable[[str, str], None]


class EventLog:
    """Writes timestamped events to a log file."""

    def __init__(self, log_path: Path, echo: bool = False):
        self.log_path = Path(log_path)
        self.echo = echo
        self._lock = threading.Lock()

    def log(self, event: str, details: str = ""):
        """Append an entry to the event log."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] - {event}"
        if details:
            log_entry += f" - {details}"

        with self._lock:
            with open(self.log_path, 'a', encoding='utf-8') as f:
                f.write(log_entry + "\n")

        if self.echo:
            print(log_entry)

    __call__ = log


def emit(session_logger: Optional[SessionLogger], event: str, details: str = ""):
    """Send an event to an optional logger."""
    if session_logger:
        session_logger(event, details)
