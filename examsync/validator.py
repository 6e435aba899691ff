"""
Session usability checks.

validate_session is a pure decision over an already loaded session: it never
touches the store and never mutates the session.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .event_log import SessionLogger, emit
from .models import ExamSession, SessionStatus, TestKind, utcnow

MSG_NOT_ACTIVE = "exam not active"
MSG_COMPLETED = "already completed"
MSG_EXPIRED = "session expired"
MSG_ATTEMPT_LIMIT = "attempt limit reached"
MSG_TIME_EXPIRED = "time expired"


@dataclass
class ValidationVerdict:
    is_valid: bool
    message: Optional[str] = None

    def __bool__(self) -> bool:
        return self.is_valid


def validate_session(
    session: ExamSession,
    now: Optional[datetime] = None,
    session_logger: Optional[SessionLogger] = None
) -> ValidationVerdict:
    """
    Decide whether a session can still be used to take the exam.

    Rules are applied in order:
        1. explicitly inactive exam/test
        2. completed, expired or attempt_limit_reached status
        3. attempts at or over max_attempts only log a warning
        4. end_time in the past, except for a psychometric session with no
           attempts yet, which may be restarted

    Args:
        session: Session loaded with its exam/test activity flag
        now: Reference time (defaults to the current UTC time)
        session_logger: Optional event logger for the attempt-limit warning

    Returns:
        ValidationVerdict with is_valid and, when invalid, a message
    """
    if session.exam_active is False:
        return ValidationVerdict(False, MSG_NOT_ACTIVE)

    if session.status == SessionStatus.COMPLETED:
        return ValidationVerdict(False, MSG_COMPLETED)

    if session.status == SessionStatus.EXPIRED:
        return ValidationVerdict(False, MSG_EXPIRED)

    if session.status == SessionStatus.ATTEMPT_LIMIT_REACHED:
        return ValidationVerdict(False, MSG_ATTEMPT_LIMIT)

    if session.attempts_taken >= session.max_attempts:
        emit(
            session_logger,
            "ATTEMPT_LIMIT_WARNING",
            f"session={session.id} attempts={session.attempts_taken}/{session.max_attempts}; continuing"
        )

    now = now or utcnow()
    if session.end_time is not None and session.end_time < now:
        if session.test_type == TestKind.PSYCHOMETRIC and session.attempts_taken == 0:
            emit(session_logger, "PSYCHOMETRIC_RESTART", f"session={session.id} end_time passed, no attempts yet")
        else:
            return ValidationVerdict(False, MSG_TIME_EXPIRED)

    return ValidationVerdict(True)
