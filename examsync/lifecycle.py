"""
Remote state transitions of an exam session.

Every operation returns a LifecycleResult instead of raising. Remote calls go
through the network retry policy; a failure that survives it is reported in
the result and nothing is assumed committed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Type

from .errors import (
    CompleteError,
    CreateError,
    ExamSyncError,
    FetchError,
    IncrementError,
    LifecycleError,
    RemoteError,
    StartError,
)
from .event_log import SessionLogger, emit
from .models import ExamSession, SessionConfig, SessionStatus, TestKind, utcnow
from .remote_store import SupabaseStore
from .retry import RetryPolicy
from .validator import ValidationVerdict, validate_session


@dataclass
class LifecycleResult:
    success: bool
    error: Optional[LifecycleError] = None
    session_id: Optional[str] = None
    session: Optional[ExamSession] = None

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error else None


class ExamSessionLifecycle:
    """Creates, starts, counts attempts for and completes exam sessions."""

    def __init__(
        self,
        store: SupabaseStore,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[SessionConfig] = None,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.retry = retry_policy or RetryPolicy(session_logger=session_logger)
        self.config = config or SessionConfig.default()
        self.session_logger = session_logger
        self.clock = clock

    def _failure(
        self,
        error_type: Type[LifecycleError],
        step: str,
        session_id: Optional[str],
        cause: Exception
    ) -> LifecycleResult:
        error = error_type(f"{step} failed: {cause}", cause=cause)
        emit(self.session_logger, "SESSION_ERROR", f"step={step} session={session_id} error={cause}")
        return LifecycleResult(success=False, error=error, session_id=session_id)

    def _load(self, session_id: str) -> ExamSession:
        row = self.retry.call(lambda: self.store.fetch_session(session_id), "fetch_session")
        return ExamSession.from_dict(row)

    def fetch(self, session_id: str) -> LifecycleResult:
        """Load a session together with its exam/test summary."""
        try:
            session = self._load(session_id)
        except ExamSyncError as e:
            return self._failure(FetchError, "fetch", session_id, e)
        return LifecycleResult(success=True, session_id=session_id, session=session)

    def validate(self, session_id: str) -> ValidationVerdict:
        """Load a session and run the usability checks on it."""
        result = self.fetch(session_id)
        if not result.success:
            return ValidationVerdict(False, result.message)
        return validate_session(result.session, now=self.clock(), session_logger=self.session_logger)

    def create(
        self,
        exam_id: str,
        user_id: str,
        test_type: str = TestKind.RELIABILITY,
        max_attempts: Optional[int] = None
    ) -> LifecycleResult:
        """
        Insert a pending session bound to the user's company.

        Psychometric tests are referenced through psychometric_test_id; every
        other kind through exam_id.
        """
        company_id = None
        try:
            profile = self.retry.call(lambda: self.store.fetch_profile(user_id), "fetch_profile")
            if profile:
                company_id = profile.get("company_id")
        except RemoteError as e:
            emit(self.session_logger, "SESSION_WARNING", f"No profile for user={user_id}: {e}")

        row = {
            "user_id": user_id,
            "test_type": test_type,
            "status": SessionStatus.PENDING,
            "attempts_taken": 0,
            "max_attempts": max_attempts or self.config.default_max_attempts,
            "company_id": company_id,
        }
        if test_type == TestKind.PSYCHOMETRIC:
            row["psychometric_test_id"] = exam_id
        else:
            row["exam_id"] = exam_id

        try:
            created = self.retry.call(lambda: self.store.insert_session(row), "insert_session")
        except ExamSyncError as e:
            return self._failure(CreateError, "create", None, e)

        session_id = created["id"]
        emit(self.session_logger, "SESSION_CREATED", f"session={session_id} exam={exam_id} user={user_id}")
        return LifecycleResult(success=True, session_id=session_id)

    def start(self, session_id: str) -> LifecycleResult:
        """
        Open the exam window.

        end_time is always refreshed to now + duration. start_time is only
        set, and attempts_taken only incremented (non-psychometric kinds),
        when the session has not started before. Completed, expired and
        attempt-limited sessions are never reopened.

        Psychometric tests always get the default duration; exams use their
        configured duration when they have one.
        """
        try:
            session = self._load(session_id)
        except ExamSyncError as e:
            return self._failure(StartError, "start", session_id, e)

        if session.status in SessionStatus.TERMINAL:
            emit(self.session_logger, "SESSION_ERROR",
                 f"step=start session={session_id} error=session is {session.status}")
            return LifecycleResult(
                success=False,
                error=StartError(f"start failed: session is {session.status}"),
                session_id=session_id,
                session=session
            )

        try:
            now = self.clock()
            duration = None if session.is_psychometric else session.duration_minutes
            duration = duration or self.config.default_duration_minutes

            updates = {
                "status": SessionStatus.STARTED,
                "end_time": now + timedelta(minutes=duration),
                "updated_at": now,
            }
            if session.start_time is None or session.status == SessionStatus.PENDING:
                updates["start_time"] = now
                if session.test_type != TestKind.PSYCHOMETRIC:
                    updates["attempts_taken"] = session.attempts_taken + 1

            self.retry.call(lambda: self.store.update_session(session_id, updates), "update_session")
            session = self._load(session_id)
        except ExamSyncError as e:
            return self._failure(StartError, "start", session_id, e)

        emit(
            self.session_logger,
            "SESSION_START",
            f"session={session_id} attempts={session.attempts_taken}/{session.max_attempts} "
            f"duration={duration}min"
        )
        return LifecycleResult(success=True, session_id=session_id, session=session)

    def increment_attempt(self, session_id: str) -> LifecycleResult:
        """Count a new attempt begun outside start()."""
        try:
            session = self._load(session_id)
            updates = {"attempts_taken": session.attempts_taken + 1, "updated_at": self.clock()}
            self.retry.call(lambda: self.store.update_session(session_id, updates), "update_session")
            session = self._load(session_id)
        except ExamSyncError as e:
            return self._failure(IncrementError, "increment_attempt", session_id, e)

        emit(self.session_logger, "SESSION_ATTEMPT", f"session={session_id} attempts={session.attempts_taken}")
        return LifecycleResult(success=True, session_id=session_id, session=session)

    def complete(self, session_id: str) -> LifecycleResult:
        """
        Mark the session completed. On failure the caller must not assume the
        exam was recorded.
        """
        updates = {"status": SessionStatus.COMPLETED, "updated_at": self.clock()}
        try:
            self.retry.call(lambda: self.store.update_session(session_id, updates), "update_session")
        except ExamSyncError as e:
            return self._failure(CompleteError, "complete", session_id, e)

        emit(self.session_logger, "SESSION_COMPLETE", f"session={session_id}")
        return LifecycleResult(success=True, session_id=session_id)

    def finish_psychometric(self, session_id: str) -> LifecycleResult:
        """
        Count the answered attempt and close a psychometric session in a
        single write. A session already completed is left untouched, so the
        call can be repeated.
        """
        try:
            session = self._load(session_id)
            if session.status == SessionStatus.COMPLETED:
                return LifecycleResult(success=True, session_id=session_id, session=session)

            now = self.clock()
            updates = {
                "status": SessionStatus.COMPLETED,
                "attempts_taken": session.attempts_taken + 1,
                "end_time": now,
                "updated_at": now,
            }
            self.retry.call(lambda: self.store.update_session(session_id, updates), "update_session")
        except ExamSyncError as e:
            return self._failure(CompleteError, "finish_psychometric", session_id, e)

        emit(self.session_logger, "SESSION_COMPLETE",
             f"session={session_id} psychometric attempts={session.attempts_taken + 1}")
        return LifecycleResult(success=True, session_id=session_id)
