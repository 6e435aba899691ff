"""
Access gate checked before an exam session may start: a valid, unused,
unexpired credential, an assignment for the exam, and a profile that is still
allowed to log in.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .errors import AccessDenied
from .event_log import SessionLogger, emit
from .models import ExamAssignment, ExamCredential, TestKind, utcnow
from .remote_store import SupabaseStore
from .retry import RetryPolicy


@dataclass
class AccessGrant:
    credential: ExamCredential
    assignment: Optional[ExamAssignment]


class AccessGate:
    """Validates credentials and assignments against the remote store."""

    def __init__(
        self,
        store: SupabaseStore,
        retry_policy: Optional[RetryPolicy] = None,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.retry = retry_policy or RetryPolicy(session_logger=session_logger)
        self.session_logger = session_logger
        self.clock = clock

    def _scope(self, exam_id: Optional[str], test_type: str) -> dict:
        # turnover credentials are not bound to an exam
        if test_type == TestKind.PSYCHOMETRIC:
            return {"psychometric_test_id": exam_id}
        if test_type == TestKind.RELIABILITY and exam_id:
            return {"exam_id": exam_id}
        return {}

    def _lookup_credential(self, username: str, exam_id: Optional[str], test_type: str) -> Optional[dict]:
        username = username.strip()
        scope = self._scope(exam_id, test_type)
        base = {"is_used": False, "test_type": test_type}
        either = f"username.eq.{username},user_email.eq.{username}"

        lookups = [
            lambda: self.store.find_credentials({"username": username, **base, **scope}),
        ]
        if "@" in username:
            lookups.append(lambda: self.store.find_credentials({"user_email": username, **base, **scope}))
        lookups.append(lambda: self.store.find_credentials(base, or_filter=either))
        lookups.append(lambda: self.store.find_credentials({"is_used": False}, or_filter=either))

        for lookup in lookups:
            rows = self.retry.call(lookup, "find_credentials")
            if rows:
                return rows[0]
        return None

    def validate_credentials(self, username: str, exam_id: Optional[str], test_type: str) -> ExamCredential:
        """
        Find an unused credential for the user, most specific match first.

        Raises:
            AccessDenied: If no credential matches or it has expired
        """
        row = self._lookup_credential(username, exam_id, test_type)
        if row is None:
            emit(self.session_logger, "ACCESS_DENIED", f"user={username} reason=no credentials")
            raise AccessDenied("no valid credentials")

        credential = ExamCredential.from_dict(row)
        if credential.is_expired(self.clock()):
            emit(self.session_logger, "ACCESS_DENIED", f"user={username} reason=credentials expired")
            raise AccessDenied("credentials expired")
        return credential

    def validate_assignment(self, user_id: str, exam_id: Optional[str], test_type: str) -> Optional[ExamAssignment]:
        """
        Assignment of the exam/test to the user, falling back to the newest
        unfinished assignment of the same kind.
        """
        if test_type == TestKind.PSYCHOMETRIC:
            filters = {"user_id": user_id, "psychometric_test_id": exam_id}
        else:
            filters = {"user_id": user_id, "exam_id": exam_id}

        rows = self.retry.call(lambda: self.store.find_assignments(filters), "find_assignments")
        if not rows:
            fallback = {"user_id": user_id, "test_type": test_type, "status": ("neq", "completed")}
            rows = self.retry.call(lambda: self.store.find_assignments(fallback), "find_assignments")
        return ExamAssignment.from_dict(rows[0]) if rows else None

    def mark_credential_used(self, credential_id: str):
        self.retry.call(lambda: self.store.mark_credential_used(credential_id), "mark_credential_used")
        emit(self.session_logger, "CREDENTIAL_USED", f"credential={credential_id}")

    def authorize(self, username: str, exam_id: Optional[str], test_type: str, user_id: str) -> AccessGrant:
        """
        Run all access checks for a user about to start an exam.

        Raises:
            AccessDenied: If any check fails
        """
        credential = self.validate_credentials(username, exam_id, test_type)

        profile = self.retry.call(lambda: self.store.fetch_profile(user_id), "fetch_profile")
        if profile and (profile.get("access_restricted") or profile.get("can_login") is False):
            emit(self.session_logger, "ACCESS_DENIED", f"user={user_id} reason=access restricted")
            raise AccessDenied("access restricted")

        assignment = self.validate_assignment(user_id, exam_id, test_type)
        if assignment is None:
            emit(self.session_logger, "ACCESS_DENIED", f"user={user_id} reason=no assignment")
            raise AccessDenied("no assignment for this exam")

        emit(self.session_logger, "ACCESS_GRANTED",
             f"user={user_id} credential={credential.id} assignment={assignment.id}")
        return AccessGrant(credential=credential, assignment=assignment)
