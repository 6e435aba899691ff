"""
Durable local queue of exam submissions waiting for the network.

The whole queue lives in one file holding a JSON array of PendingSubmission
records, rewritten on every mutation. When a Fernet key is configured the
file holds the encrypted array instead, so answers left on a shared kiosk are
not readable from disk.
"""

import copy
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .errors import QueueExhaustion
from .event_log import SessionLogger, emit
from .models import OfflineQueueConfig, PendingSubmission, format_timestamp, utcnow
from .storage import atomic_write, read_key

DEFAULT_MAX_RETRIES = 5


class DurableSubmissionQueue:
    """Single-writer, whole-file persisted list of pending submissions."""

    def __init__(
        self,
        path: Path,
        max_retries: int = DEFAULT_MAX_RETRIES,
        key: Optional[bytes] = None,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.path = Path(path)
        self.max_retries = max_retries
        self.fernet = Fernet(key) if key else None
        self.session_logger = session_logger
        self.clock = clock
        self._lock = threading.RLock()
        self._items: List[PendingSubmission] = self._load()

    @classmethod
    def from_config(
        cls,
        config: OfflineQueueConfig,
        session_logger: Optional[SessionLogger] = None
    ) -> 'DurableSubmissionQueue':
        return cls(
            Path(config.path),
            max_retries=config.max_retries,
            key=read_key(config.key_file),
            session_logger=session_logger
        )

    def _load(self) -> List[PendingSubmission]:
        """Read the queue file; unreadable content is discarded, never fatal."""
        if not self.path.exists():
            return []

        try:
            raw = self.path.read_bytes()
            if self.fernet:
                raw = self.fernet.decrypt(raw)
            data = json.loads(raw.decode('utf-8'))
            if not isinstance(data, list):
                raise ValueError("queue file does not hold a list")
            items = [PendingSubmission.from_dict(entry) for entry in data]
        except (OSError, InvalidToken, ValueError, KeyError, TypeError) as e:
            emit(self.session_logger, "QUEUE_DISCARDED", f"Unreadable queue file {self.path}: {e}")
            try:
                self.path.unlink()
            except OSError:
                pass
            return []

        emit(self.session_logger, "QUEUE_LOADED", f"{len(items)} pending submission(s)")
        return items

    def _save(self):
        """Atomically replace the queue file with the current list."""
        payload = json.dumps([item.to_dict() for item in self._items], ensure_ascii=False).encode('utf-8')
        if self.fernet:
            payload = self.fernet.encrypt(payload)

        atomic_write(self.path, payload)

    def _index(self, submission_id: str) -> int:
        for i, item in enumerate(self._items):
            if item.id == submission_id:
                return i
        return -1

    def enqueue(
        self,
        exam_id: str,
        user_id: str,
        questions: List[Any],
        answers: List[Any],
        session_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        is_anonymous_session: bool = False,
        kiosk_mode: bool = False,
        assignment_id: Optional[str] = None,
        responses: Optional[List[Dict[str, Any]]] = None,
        scores: Optional[Dict[str, float]] = None
    ) -> str:
        """
        Append a submission snapshot and persist the queue.

        Psychometric results pass ``responses`` and ``scores``; their ids are
        keyed by user instead of exam.

        Returns:
            The id of the new PendingSubmission
        """
        with self._lock:
            now = self.clock()
            if scores is not None:
                base_id = PendingSubmission.make_psychometric_id(user_id, now)
            else:
                base_id = PendingSubmission.make_id(exam_id, user_id, now)
            submission_id = base_id
            suffix = 1
            while self._index(submission_id) >= 0:
                submission_id = f"{base_id}-{suffix}"
                suffix += 1

            submission = PendingSubmission(
                id=submission_id,
                exam_id=exam_id,
                user_id=user_id,
                questions=copy.deepcopy(questions),
                answers=copy.deepcopy(answers),
                timestamp=format_timestamp(now),
                session_id=session_id,
                attempt_id=attempt_id,
                is_anonymous_session=is_anonymous_session,
                kiosk_mode=kiosk_mode,
                assignment_id=assignment_id,
                retry_count=0,
                max_retries=self.max_retries,
                responses=copy.deepcopy(responses or []),
                scores=dict(scores) if scores is not None else None
            )
            self._items.append(submission)
            self._save()

        emit(self.session_logger, "SUBMISSION_QUEUED", f"id={submission_id} exam={exam_id} user={user_id}")
        return submission_id

    def dequeue_on_success(self, submission_id: str) -> bool:
        """Remove a submission that reached the server."""
        with self._lock:
            index = self._index(submission_id)
            if index < 0:
                return False
            del self._items[index]
            self._save()

        emit(self.session_logger, "SUBMISSION_DEQUEUED", f"id={submission_id}")
        return True

    def increment_retry(self, submission_id: str) -> Optional[PendingSubmission]:
        """
        Count one failed replay. A record that reaches max_retries stays in
        the queue but is no longer returned by retryable().
        """
        with self._lock:
            index = self._index(submission_id)
            if index < 0:
                return None
            item = self._items[index]
            item.retry_count = min(item.retry_count + 1, item.max_retries)
            self._save()
            snapshot = copy.deepcopy(item)

        if snapshot.is_exhausted:
            emit(self.session_logger, "SUBMISSION_EXHAUSTED",
                 f"id={submission_id} retries={snapshot.retry_count}/{snapshot.max_retries}")
        return snapshot

    def get(self, submission_id: str) -> Optional[PendingSubmission]:
        with self._lock:
            index = self._index(submission_id)
            return copy.deepcopy(self._items[index]) if index >= 0 else None

    def require_retryable(self, submission_id: str) -> PendingSubmission:
        """
        Return a submission that may still be replayed.

        Raises:
            KeyError: If the id is unknown
            QueueExhaustion: If the submission used all its retries
        """
        item = self.get(submission_id)
        if item is None:
            raise KeyError(submission_id)
        if item.is_exhausted:
            raise QueueExhaustion(item.id, item.retry_count, item.max_retries)
        return item

    def pending(self) -> List[PendingSubmission]:
        """All records, including exhausted ones, in enqueue order."""
        with self._lock:
            return copy.deepcopy(self._items)

    def retryable(self) -> List[PendingSubmission]:
        """Records with retries left, in enqueue order."""
        with self._lock:
            return [copy.deepcopy(item) for item in self._items if not item.is_exhausted]

    def exhausted(self) -> List[PendingSubmission]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._items if item.is_exhausted]

    def purge_exhausted(self) -> int:
        """Delete records that used all retries. Returns how many were removed."""
        with self._lock:
            kept = [item for item in self._items if not item.is_exhausted]
            removed = len(self._items) - len(kept)
            if removed:
                self._items = kept
                self._save()

        if removed:
            emit(self.session_logger, "QUEUE_PURGE_EXHAUSTED", f"{removed} record(s) removed")
        return removed

    def purge_all(self) -> int:
        """Delete every record and the queue file."""
        with self._lock:
            removed = len(self._items)
            self._items = []
            if self.path.exists():
                self.path.unlink()

        emit(self.session_logger, "QUEUE_PURGE_ALL", f"{removed} record(s) removed")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
