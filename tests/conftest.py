"""
Shared fixtures: an in-memory stand-in for the Supabase store and helpers
to build clocks, queues and monitors.
"""

import copy
import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from examsync.connectivity import NetworkStatusMonitor
from examsync.errors import NotFound
from examsync.lifecycle import ExamSessionLifecycle
from examsync.models import as_row
from examsync.offline_queue import DurableSubmissionQueue
from examsync.retry import RetryPolicy

NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeStore:
    """Records calls and keeps rows in dicts; failures are scripted per method."""

    def __init__(self):
        self.sessions = {}
        self.attempts = {}
        self.assignments = {}
        self.profiles = {}
        self.credentials = []
        self.personality_responses = []
        self.personality_results = {}
        self.calls = []
        self.failures = {}
        self._ids = itertools.count(1)

    def fail(self, method, *errors):
        """Queue errors for the next calls of ``method``; None lets a call succeed."""
        self.failures.setdefault(method, []).extend(errors)

    def called(self, method):
        return [call for call in self.calls if call[0] == method]

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        pending = self.failures.get(method)
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error

    def add_session(self, session_id="session-1", exam=None, **fields):
        row = {
            "id": session_id,
            "user_id": "user-1",
            "exam_id": "exam-1",
            "psychometric_test_id": None,
            "test_type": "reliability",
            "status": "pending",
            "start_time": None,
            "end_time": None,
            "attempts_taken": 0,
            "max_attempts": 2,
            "exams": exam if exam is not None else {"id": "exam-1", "estado": "activo", "duracion_minutos": 30},
        }
        row.update(fields)
        self.sessions[session_id] = row
        return row

    def fetch_session(self, session_id):
        self._record("fetch_session", session_id)
        if session_id not in self.sessions:
            raise NotFound(f"No row in exam_sessions matching {session_id}")
        return copy.deepcopy(self.sessions[session_id])

    def insert_session(self, row):
        self._record("insert_session", row)
        session_id = f"session-{next(self._ids)}"
        self.sessions[session_id] = dict(as_row(row), id=session_id)
        return {"id": session_id}

    def update_session(self, session_id, values):
        self._record("update_session", session_id, values)
        if session_id not in self.sessions:
            return []
        self.sessions[session_id].update(as_row(values))
        return [copy.deepcopy(self.sessions[session_id])]

    def fetch_profile(self, user_id):
        self._record("fetch_profile", user_id)
        return copy.deepcopy(self.profiles.get(user_id))

    def create_attempt(self, exam_id, user_id, questions, answers, attempt_id=None):
        self._record("create_attempt", exam_id, user_id, questions, answers, attempt_id)
        attempt_id = attempt_id or f"attempt-{next(self._ids)}"
        self.attempts.setdefault(attempt_id, {
            "id": attempt_id,
            "exam_id": exam_id,
            "user_id": user_id,
            "questions": copy.deepcopy(questions),
            "answers": copy.deepcopy(answers),
            "completed": True,
        })
        return {"id": attempt_id}

    def update_attempt(self, attempt_id, questions, answers):
        self._record("update_attempt", attempt_id, questions, answers)
        attempt = self.attempts.setdefault(attempt_id, {"id": attempt_id})
        attempt.update({"questions": copy.deepcopy(questions), "answers": copy.deepcopy(answers)})
        return attempt

    def complete_attempt(self, attempt_id):
        self._record("complete_attempt", attempt_id)
        self.attempts.setdefault(attempt_id, {"id": attempt_id})["completed"] = True
        return [self.attempts[attempt_id]]

    def has_personality_responses(self, user_id, session_id):
        self._record("has_personality_responses", user_id, session_id)
        return any(row["user_id"] == user_id and row["session_id"] == session_id
                   for row in self.personality_responses)

    def insert_personality_responses(self, user_id, session_id, responses):
        self._record("insert_personality_responses", user_id, session_id, responses)
        rows = [
            {"user_id": user_id, "session_id": session_id,
             "question_id": r["questionId"], "response_value": r["responseValue"]}
            for r in responses
        ]
        self.personality_responses.extend(rows)
        return rows

    def has_personality_results(self, user_id, session_id):
        self._record("has_personality_results", user_id, session_id)
        return (user_id, session_id) in self.personality_results

    def insert_personality_results(self, user_id, session_id, scores):
        self._record("insert_personality_results", user_id, session_id, scores)
        row = {f"{trait}_score": value for trait, value in scores.items()}
        self.personality_results[(user_id, session_id)] = row
        return row

    def update_assignment_status(self, assignment_id, status):
        self._record("update_assignment_status", assignment_id, status)
        self.assignments.setdefault(assignment_id, {"id": assignment_id})["status"] = status
        return [self.assignments[assignment_id]]

    def restrict_user_access(self, user_id):
        self._record("restrict_user_access", user_id)
        profile = self.profiles.setdefault(user_id, {"id": user_id})
        profile.update({"can_login": False, "access_restricted": True})
        return [profile]

    def find_credentials(self, filters, or_filter=None):
        self._record("find_credentials", filters, or_filter)
        return []

    def find_assignments(self, filters):
        self._record("find_assignments", filters)
        return []

    def mark_credential_used(self, credential_id):
        self._record("mark_credential_used", credential_id)
        return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def events():
    """Mock session logger collecting (event, details) calls."""
    return Mock()


@pytest.fixture
def retry_policy(events):
    """Retry policy that never actually sleeps."""
    return RetryPolicy(session_logger=events, sleep=Mock())


@pytest.fixture
def lifecycle(store, retry_policy, events, clock):
    return ExamSessionLifecycle(store, retry_policy=retry_policy, session_logger=events, clock=clock)


@pytest.fixture
def queue(tmp_path, events, clock):
    return DurableSubmissionQueue(tmp_path / "pending.json", session_logger=events, clock=clock)


@pytest.fixture
def monitor(events, clock):
    probe = Mock(return_value=False)
    return NetworkStatusMonitor(initially_online=True, probe=probe, session_logger=events, clock=clock)
