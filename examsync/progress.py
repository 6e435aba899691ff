"""
Local snapshots of in-progress exams, so answers survive a crash or a closed
window and can be offered back when the candidate returns.

One file per exam and user under the progress directory. When the offline
queue has a Fernet key the snapshots are encrypted with it as well.
"""

import json
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .event_log import SessionLogger, emit
from .models import ProgressConfig, format_timestamp, parse_timestamp, utcnow
from .storage import atomic_write, read_key

STORAGE_KEY_PREFIX = "exam_progress_"


@dataclass
class ExamProgress:
    """Answers given so far and the question the candidate was on."""
    exam_id: str
    questions: List[Any]
    answers: List[Any]
    current_question_index: int = 0
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    last_updated: Optional[datetime] = None
    exam_started: bool = True
    exam_completed: bool = False

    def to_dict(self) -> dict:
        return {
            "examId": self.exam_id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "questions": self.questions,
            "answers": self.answers,
            "currentQuestionIndex": self.current_question_index,
            "lastUpdated": format_timestamp(self.last_updated) if self.last_updated else None,
            "examStarted": self.exam_started,
            "examCompleted": self.exam_completed,
        }

    @staticmethod
    def from_dict(data: dict) -> 'ExamProgress':
        return ExamProgress(
            exam_id=data['examId'],
            questions=list(data['questions']),
            answers=list(data['answers']),
            current_question_index=int(data.get('currentQuestionIndex', 0)),
            session_id=data.get('sessionId'),
            user_id=data.get('userId'),
            last_updated=parse_timestamp(data.get('lastUpdated')),
            exam_started=bool(data.get('examStarted', False)),
            exam_completed=bool(data.get('examCompleted', False))
        )


def storage_key(exam_id: str, user_id: Optional[str] = None, session_id: Optional[str] = None) -> str:
    return f"{STORAGE_KEY_PREFIX}{exam_id}_{user_id or session_id or 'anonymous'}"


class ProgressStore:
    """Saves, recovers and clears per-exam progress snapshots."""

    def __init__(
        self,
        directory: Path,
        key: Optional[bytes] = None,
        max_age_hours: float = 24.0,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.directory = Path(directory)
        self.fernet = Fernet(key) if key else None
        self.max_age = timedelta(hours=max_age_hours)
        self.session_logger = session_logger
        self.clock = clock
        self._last_saved: Dict[str, str] = {}

    @classmethod
    def from_config(
        cls,
        config: ProgressConfig,
        key_file: Optional[str] = None,
        session_logger: Optional[SessionLogger] = None
    ) -> 'ProgressStore':
        return cls(
            Path(config.directory),
            key=read_key(key_file),
            max_age_hours=config.max_age_hours,
            session_logger=session_logger
        )

    def path_for(self, exam_id: str, user_id: Optional[str] = None, session_id: Optional[str] = None) -> Path:
        return self.directory / f"{storage_key(exam_id, user_id, session_id)}.json"

    def save(self, progress: ExamProgress) -> bool:
        """
        Write a snapshot of a running exam.

        Nothing is written before the exam starts, after it completes, or
        when answers and position are unchanged since the last save.

        Returns:
            True if a snapshot was written
        """
        if not progress.exam_started or progress.exam_completed:
            return False

        key = storage_key(progress.exam_id, progress.user_id, progress.session_id)
        fingerprint = json.dumps(replace(progress, last_updated=None).to_dict(), sort_keys=True, default=str)
        if self._last_saved.get(key) == fingerprint:
            return False

        snapshot = replace(progress, last_updated=self.clock())
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False).encode('utf-8')
        if self.fernet:
            payload = self.fernet.encrypt(payload)

        try:
            atomic_write(self.path_for(progress.exam_id, progress.user_id, progress.session_id), payload)
        except OSError as e:
            emit(self.session_logger, "PROGRESS_ERROR", f"exam={progress.exam_id} error={e}")
            return False

        self._last_saved[key] = fingerprint
        emit(self.session_logger, "PROGRESS_SAVED",
             f"exam={progress.exam_id} question={progress.current_question_index + 1}/{len(progress.questions)}")
        return True

    def load(
        self,
        exam_id: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> Optional[ExamProgress]:
        """Read a snapshot as stored; unreadable files are removed."""
        path = self.path_for(exam_id, user_id, session_id)
        if not path.exists():
            return None

        try:
            raw = path.read_bytes()
            if self.fernet:
                raw = self.fernet.decrypt(raw)
            return ExamProgress.from_dict(json.loads(raw.decode('utf-8')))
        except (OSError, InvalidToken, ValueError, KeyError, TypeError) as e:
            emit(self.session_logger, "PROGRESS_DISCARDED", f"Unreadable progress file {path}: {e}")
            self.clear(exam_id, user_id=user_id, session_id=session_id)
            return None

    def recover(
        self,
        exam_id: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> Optional[ExamProgress]:
        """
        Return progress worth resuming: started, not completed and updated
        within max_age. Anything else found on disk is cleared.
        """
        progress = self.load(exam_id, user_id=user_id, session_id=session_id)
        if progress is None:
            return None

        fresh = progress.last_updated is not None and self.clock() - progress.last_updated < self.max_age
        if not fresh or not progress.exam_started or progress.exam_completed:
            emit(self.session_logger, "PROGRESS_STALE", f"exam={exam_id} last_updated={progress.last_updated}")
            self.clear(exam_id, user_id=user_id, session_id=session_id)
            return None

        emit(self.session_logger, "PROGRESS_RECOVERED",
             f"exam={exam_id} resuming at question {progress.current_question_index + 1}")
        return progress

    def clear(self, exam_id: str, user_id: Optional[str] = None, session_id: Optional[str] = None) -> bool:
        """Remove the snapshot of an exam. Returns True if one existed."""
        self._last_saved.pop(storage_key(exam_id, user_id, session_id), None)
        path = self.path_for(exam_id, user_id, session_id)
        if not path.exists():
            return False

        try:
            path.unlink()
        except OSError as e:
            emit(self.session_logger, "PROGRESS_ERROR", f"exam={exam_id} error={e}")
            return False

        emit(self.session_logger, "PROGRESS_CLEARED", f"exam={exam_id}")
        return True

    def has_progress(self, exam_id: str, user_id: Optional[str] = None, session_id: Optional[str] = None) -> bool:
        return self.path_for(exam_id, user_id, session_id).exists()
