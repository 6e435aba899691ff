"""
Submission coordinator: the single place that decides whether a finished exam
goes straight to the remote store or into the durable offline queue.

    START -> check network
        OFFLINE          -> enqueue            -> queued
        ONLINE           -> write attempt data
            success          -> complete attempt/session, kiosk lockout -> committed
            network failure  -> mark offline, enqueue -> queued
            other failure    -> error

Commits run as a saga of idempotent steps (data write, attempt completion,
session completion, kiosk lockout). Only the data write decides the outcome;
later steps are logged on failure and caught up by re-running the saga.
Psychometric submissions write their responses and Big Five scores instead
of an attempt, then close the session.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .connectivity import NetworkStatusMonitor
from .errors import NetworkError, RemoteError, ValidationError
from .event_log import SessionLogger, emit
from .lifecycle import ExamSessionLifecycle
from .models import (
    ExamSession,
    NetworkStatus,
    PendingSubmission,
    PersonalityResponse,
    PsychometricScores,
    format_timestamp,
    utcnow,
)
from .offline_queue import DurableSubmissionQueue
from .progress import ProgressStore
from .remote_store import SupabaseStore

STATE_COMMITTED = "committed"
STATE_QUEUED = "queued"
STATE_ERROR = "error"

MSG_COMMITTED = "Exam submitted successfully"
MSG_QUEUED = "Answers saved locally. They will be sent when the connection is restored."
MSG_ERROR = "Error submitting the exam"


@dataclass
class SubmissionRequest:
    """Everything needed to commit one finished exam."""
    exam_id: str
    questions: List[Any]
    answers: List[Any]
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    session: Optional[ExamSession] = None
    attempt_id: Optional[str] = None
    is_anonymous_session: bool = False
    kiosk_mode: bool = False
    assignment_id: Optional[str] = None


@dataclass
class PsychometricSubmissionRequest:
    """Answers and Big Five scores of one finished psychometric test."""
    session_id: str
    responses: List[PersonalityResponse]
    scores: PsychometricScores
    user_id: Optional[str] = None
    session: Optional[ExamSession] = None


@dataclass
class SubmissionOutcome:
    state: str
    message: str
    submission_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def accepted(self) -> bool:
        """Committed and queued submissions are both reported as saved."""
        return self.state in (STATE_COMMITTED, STATE_QUEUED)


@dataclass
class ReplaySummary:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    exhausted: List[str] = field(default_factory=list)
    skipped: bool = False


class SubmissionCoordinator:
    """Routes exam submissions to the store or the offline queue."""

    def __init__(
        self,
        store: SupabaseStore,
        lifecycle: ExamSessionLifecycle,
        queue: DurableSubmissionQueue,
        monitor: NetworkStatusMonitor,
        session_logger: Optional[SessionLogger] = None,
        replay_pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[ProgressStore] = None
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.queue = queue
        self.monitor = monitor
        self.session_logger = session_logger
        self.replay_pause_seconds = replay_pause_seconds
        self.sleep = sleep
        self.progress = progress
        self._replay_lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ===== SUBMISSION =====

    def _check_preconditions(self, request: SubmissionRequest):
        """Data integrity gate; failures are never retried or queued."""
        if request.is_anonymous_session:
            if not request.session_id:
                raise ValidationError("Invalid session for anonymous user: missing session id")
            if request.session is None:
                raise ValidationError("Session data not found")
            if not request.session.user_id:
                raise ValidationError("User id not found in session")
            if not request.questions:
                raise ValidationError("Exam questions not found")
            if not request.answers:
                raise ValidationError("Exam answers not found")
        elif not request.attempt_id:
            raise ValidationError("No active attempt for registered user")

    def _to_pending(self, request: SubmissionRequest) -> PendingSubmission:
        if request.is_anonymous_session:
            user_id = request.session.user_id
            # fixed up front so a replayed insert of the same attempt is ignored
            attempt_id = request.attempt_id or str(uuid.uuid4())
        else:
            user_id = request.user_id or "unknown"
            attempt_id = request.attempt_id

        now = utcnow()
        return PendingSubmission(
            id=PendingSubmission.make_id(request.exam_id, user_id, now),
            exam_id=request.exam_id,
            user_id=user_id,
            questions=request.questions,
            answers=request.answers,
            timestamp=format_timestamp(now),
            session_id=request.session_id,
            attempt_id=attempt_id,
            is_anonymous_session=request.is_anonymous_session,
            kiosk_mode=request.kiosk_mode,
            assignment_id=request.assignment_id
        )

    def _psychometric_to_pending(self, request: PsychometricSubmissionRequest) -> PendingSubmission:
        user_id = request.user_id or (request.session.user_id if request.session else None)
        if not user_id:
            raise ValidationError("Could not determine the user")
        if not request.session_id:
            raise ValidationError("Invalid psychometric session: missing session id")
        if not request.responses:
            raise ValidationError("Psychometric responses not found")
        if request.scores is None:
            raise ValidationError("Psychometric scores not found")

        now = utcnow()
        test_id = request.session.psychometric_test_id if request.session else None
        return PendingSubmission(
            id=PendingSubmission.make_psychometric_id(user_id, now),
            exam_id=test_id or "",
            user_id=user_id,
            questions=[],
            answers=[],
            timestamp=format_timestamp(now),
            session_id=request.session_id,
            responses=[response.to_dict() for response in request.responses],
            scores=request.scores.to_dict()
        )

    def _enqueue(self, item: PendingSubmission) -> SubmissionOutcome:
        submission_id = self.queue.enqueue(
            item.exam_id,
            item.user_id,
            item.questions,
            item.answers,
            session_id=item.session_id,
            attempt_id=item.attempt_id,
            is_anonymous_session=item.is_anonymous_session,
            kiosk_mode=item.kiosk_mode,
            assignment_id=item.assignment_id,
            responses=item.responses if item.is_psychometric else None,
            scores=item.scores
        )
        return SubmissionOutcome(STATE_QUEUED, MSG_QUEUED, submission_id=submission_id)

    def submit(self, request: SubmissionRequest) -> SubmissionOutcome:
        """
        Commit a finished exam, or preserve it locally when the network is gone.

        Raises:
            ValidationError: If required identifiers or data are missing
        """
        self._check_preconditions(request)
        return self._dispatch(self._to_pending(request))

    def submit_psychometric(self, request: PsychometricSubmissionRequest) -> SubmissionOutcome:
        """
        Commit psychometric responses and scores, or queue them while offline.

        Raises:
            ValidationError: If the user, session or responses are missing
        """
        return self._dispatch(self._psychometric_to_pending(request))

    def _dispatch(self, item: PendingSubmission) -> SubmissionOutcome:
        emit(
            self.session_logger,
            "SUBMIT_START",
            f"exam={item.exam_id} user={item.user_id} anonymous={item.is_anonymous_session} "
            f"psychometric={item.is_psychometric} online={self.monitor.is_online}"
        )

        if not self.monitor.is_online:
            outcome = self._enqueue(item)
        else:
            try:
                self.reconcile(item)
                outcome = SubmissionOutcome(STATE_COMMITTED, MSG_COMMITTED)
            except NetworkError as e:
                emit(self.session_logger, "SUBMIT_NETWORK_ERROR", f"exam={item.exam_id} error={e}; queuing")
                self.monitor.handle_offline()
                outcome = self._enqueue(item)
            except RemoteError as e:
                emit(self.session_logger, "SUBMIT_ERROR", f"exam={item.exam_id} error={e}")
                return SubmissionOutcome(STATE_ERROR, f"{MSG_ERROR}: {e}", error=e)

        if self.progress is not None and not item.is_psychometric:
            self.progress.clear(item.exam_id, user_id=item.user_id, session_id=item.session_id)
        return outcome

    # ===== COMMIT SAGA =====

    def reconcile(self, item: PendingSubmission):
        """
        Run every commit step for a submission. Each step is idempotent, so
        re-running catches up whatever a previous run did not finish.

        Raises:
            RemoteError: If the attempt data could not be written
        """
        if item.is_psychometric:
            self._reconcile_psychometric(item)
            return

        if item.is_anonymous_session:
            self.store.create_attempt(
                item.exam_id, item.user_id, item.questions, item.answers, attempt_id=item.attempt_id
            )
        elif item.attempt_id:
            self.store.update_attempt(item.attempt_id, item.questions, item.answers)
            self._follow_up("complete_attempt", item, lambda: self.store.complete_attempt(item.attempt_id))

        if item.session_id:
            result = self.lifecycle.complete(item.session_id)
            if not result.success:
                emit(self.session_logger, "SUBMIT_WARNING",
                     f"step=complete_session session={item.session_id} error={result.message}")

        if item.kiosk_mode and item.assignment_id:
            self._follow_up(
                "complete_assignment", item,
                lambda: self.store.update_assignment_status(item.assignment_id, "completed")
            )
            self._follow_up("restrict_access", item, lambda: self.store.restrict_user_access(item.user_id))

        emit(self.session_logger, "SUBMIT_COMMITTED", f"exam={item.exam_id} user={item.user_id}")

    def _reconcile_psychometric(self, item: PendingSubmission):
        """
        Responses, then scores, then the session. Rows already written by an
        earlier run are not inserted twice.
        """
        if not self.store.has_personality_responses(item.user_id, item.session_id):
            self.store.insert_personality_responses(item.user_id, item.session_id, item.responses)
        if not self.store.has_personality_results(item.user_id, item.session_id):
            self.store.insert_personality_results(item.user_id, item.session_id, item.scores)

        result = self.lifecycle.finish_psychometric(item.session_id)
        if not result.success:
            emit(self.session_logger, "SUBMIT_WARNING",
                 f"step=finish_psychometric session={item.session_id} error={result.message}")

        emit(self.session_logger, "SUBMIT_COMMITTED", f"psychometric session={item.session_id} user={item.user_id}")

    def _follow_up(self, step: str, item: PendingSubmission, action: Callable[[], Any]):
        try:
            action()
        except RemoteError as e:
            emit(self.session_logger, "SUBMIT_WARNING", f"step={step} exam={item.exam_id} error={e}")

    # ===== REPLAY =====

    def _replay_one(self, item: PendingSubmission, summary: ReplaySummary):
        try:
            self.reconcile(item)
        except RemoteError as e:
            if isinstance(e, NetworkError) and self.monitor.is_online:
                self.monitor.handle_offline()
            updated = self.queue.increment_retry(item.id)
            emit(self.session_logger, "REPLAY_FAILED", f"id={item.id} error={e}")
            summary.failed.append(item.id)
            if updated is not None and updated.is_exhausted:
                summary.exhausted.append(item.id)
            return

        self.queue.dequeue_on_success(item.id)
        summary.succeeded.append(item.id)

    def replay_pending(self) -> ReplaySummary:
        """
        Replay every retryable queued submission, oldest first.

        Does nothing while offline or while another replay is running.
        """
        summary = ReplaySummary()
        if not self.monitor.is_online or not self._replay_lock.acquire(blocking=False):
            summary.skipped = True
            return summary

        try:
            pending = self.queue.retryable()
            if pending:
                emit(self.session_logger, "REPLAY_START", f"{len(pending)} submission(s)")

            for index, item in enumerate(pending):
                if index and self.replay_pause_seconds:
                    self.sleep(self.replay_pause_seconds)
                if not self.monitor.is_online:
                    emit(self.session_logger, "REPLAY_INTERRUPTED", "Connection lost during replay")
                    break
                self._replay_one(item, summary)
        finally:
            self._replay_lock.release()

        if summary.succeeded or summary.failed:
            emit(self.session_logger, "REPLAY_DONE",
                 f"sent={len(summary.succeeded)} failed={len(summary.failed)} "
                 f"exhausted={len(summary.exhausted)}")
        return summary

    def retry_one(self, submission_id: str) -> bool:
        """
        Manually replay one queued submission.

        Raises:
            KeyError: If the submission is not queued
            QueueExhaustion: If it already used all of its retries
        """
        item = self.queue.require_retryable(submission_id)
        summary = ReplaySummary()
        self._replay_one(item, summary)
        return bool(summary.succeeded)

    # ===== RECONNECT HOOK =====

    def _on_status_change(self, status: NetworkStatus):
        if status.is_online and status.was_offline:
            self.replay_pending()

    def attach(self) -> 'SubmissionCoordinator':
        """Replay the queue automatically whenever the connection comes back."""
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_status_change)
        return self

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
