"""
Countdown for a started exam session.

The session's end_time is the only source of truth; the timer never changes
the session, it only tells the caller when the window has closed.
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from .event_log import SessionLogger, emit
from .models import ExamSession, utcnow


class SessionTimer:
    """Remaining-time view of a session plus a one-shot time-up callback."""

    def __init__(
        self,
        session: ExamSession,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session = session
        self.session_logger = session_logger
        self.clock = clock

        self.timer_active = False
        self.timer_thread: Optional[threading.Thread] = None
        self.time_up_fired = False

    def get_remaining_time(self) -> timedelta:
        """Get the remaining exam time as a timedelta."""
        if self.session.end_time is None:
            return timedelta.max  # No time limit

        remaining = self.session.end_time - self.clock()
        return max(remaining, timedelta(0))

    def is_time_expired(self) -> bool:
        """Check if exam time has expired."""
        if self.session.end_time is None:
            return False
        return self.get_remaining_time() <= timedelta(0)

    def format_remaining_time(self) -> str:
        """Format remaining time as HH:MM:SS."""
        if self.session.end_time is None:
            return "infinite"

        total_seconds = int(self.get_remaining_time().total_seconds())
        hours = total_seconds // 3600
        minutes = (total_seconds % 3600) // 60
        seconds = total_seconds % 60
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def check(self, on_time_up: Callable[[], None]) -> bool:
        """
        Fire ``on_time_up`` if the window has closed and it has not fired yet.

        Returns:
            True if the callback fired on this call
        """
        if self.time_up_fired or not self.is_time_expired():
            return False

        self.time_up_fired = True
        emit(self.session_logger, "EXAM_TIMEOUT", f"session={self.session.id} exam time finished")
        on_time_up()
        return True

    def start_watch(self, on_time_up: Callable[[], None]):
        """Start a background thread that calls ``on_time_up`` once when time runs out."""
        if self.timer_active:
            return

        self.timer_active = True
        self.timer_thread = threading.Thread(
            target=self._monitor_exam_timer,
            args=(on_time_up,),
            daemon=True
        )
        self.timer_thread.start()

    def stop_watch(self):
        self.timer_active = False
        if self.timer_thread and self.timer_thread.is_alive():
            self.timer_thread.join(timeout=2.0)
        self.timer_thread = None

    def _monitor_exam_timer(self, on_time_up: Callable[[], None]):
        """Background thread checking the exam window every second."""
        while self.timer_active and not self.time_up_fired:
            try:
                self.check(on_time_up)
            except Exception as e:
                emit(self.session_logger, "ERROR", f"Time-up handler failed: {e}")
                break
            time.sleep(1)  # Check every second
