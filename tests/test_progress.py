"""
Tests for in-progress exam snapshots.

Tests:
- Saving only running exams, and only when something changed
- Recovery of recent snapshots and cleanup of stale or finished ones
- Corrupt and encrypted files
"""

import json

import pytest
from cryptography.fernet import Fernet

from examsync.models import ProgressConfig
from examsync.progress import ExamProgress, ProgressStore, storage_key

QUESTIONS = [{"id": "q1"}, {"id": "q2"}, {"id": "q3"}]


@pytest.fixture
def progress(tmp_path, events, clock):
    return ProgressStore(tmp_path / "progress", session_logger=events, clock=clock)


def snapshot(answers=None, index=1, **overrides):
    values = dict(
        exam_id="exam-1",
        questions=QUESTIONS,
        answers=answers if answers is not None else [{"questionId": "q1", "answer": "no"}],
        current_question_index=index,
        user_id="user-1",
    )
    values.update(overrides)
    return ExamProgress(**values)


class TestStorageKey:
    """File naming."""

    def test_prefers_user_then_session(self):
        assert storage_key("exam-1", "user-1", "session-1") == "exam_progress_exam-1_user-1"
        assert storage_key("exam-1", None, "session-1") == "exam_progress_exam-1_session-1"
        assert storage_key("exam-1") == "exam_progress_exam-1_anonymous"


class TestSave:
    """Writing snapshots."""

    def test_save_writes_camel_case_file(self, progress, clock):
        assert progress.save(snapshot()) is True

        data = json.loads(progress.path_for("exam-1", "user-1").read_text(encoding="utf-8"))
        assert data["examId"] == "exam-1"
        assert data["currentQuestionIndex"] == 1
        assert data["answers"] == [{"questionId": "q1", "answer": "no"}]
        assert data["lastUpdated"] == clock.now.isoformat()
        assert data["examStarted"] is True

    def test_unchanged_progress_is_not_rewritten(self, progress, clock, events):
        progress.save(snapshot())
        clock.advance(minutes=1)

        assert progress.save(snapshot()) is False
        saved = [call for call in events.call_args_list if call.args[0] == "PROGRESS_SAVED"]
        assert len(saved) == 1

    def test_new_answer_is_saved(self, progress):
        progress.save(snapshot())

        changed = snapshot(answers=[{"questionId": "q1", "answer": "no"}, {"questionId": "q2", "answer": "sí"}], index=2)

        assert progress.save(changed) is True
        assert progress.load("exam-1", user_id="user-1").current_question_index == 2

    @pytest.mark.parametrize("overrides", [{"exam_started": False}, {"exam_completed": True}])
    def test_not_saved_outside_running_exam(self, progress, overrides):
        assert progress.save(snapshot(**overrides)) is False
        assert progress.has_progress("exam-1", user_id="user-1") is False

    def test_encrypted_snapshot(self, tmp_path, clock):
        key = Fernet.generate_key()
        store = ProgressStore(tmp_path / "progress", key=key, clock=clock)

        store.save(snapshot(answers=[{"questionId": "q1", "answer": "secreto"}]))

        assert b"secreto" not in store.path_for("exam-1", "user-1").read_bytes()
        reopened = ProgressStore(tmp_path / "progress", key=key, clock=clock)
        assert reopened.load("exam-1", user_id="user-1").answers == [{"questionId": "q1", "answer": "secreto"}]

    def test_from_config_uses_queue_key(self, tmp_path):
        key_file = tmp_path / "queue.key"
        key_file.write_bytes(Fernet.generate_key() + b"\n")

        store = ProgressStore.from_config(
            ProgressConfig(directory=str(tmp_path / "progress"), max_age_hours=2),
            key_file=str(key_file)
        )

        assert store.fernet is not None
        assert store.max_age.total_seconds() == 7200


class TestRecover:
    """Offering saved progress back."""

    def test_recent_progress_is_recovered(self, progress, clock):
        progress.save(snapshot(index=2))
        clock.advance(hours=23)

        recovered = progress.recover("exam-1", user_id="user-1")

        assert recovered.current_question_index == 2
        assert recovered.answers == [{"questionId": "q1", "answer": "no"}]

    def test_stale_progress_is_cleared(self, progress, clock):
        progress.save(snapshot())
        clock.advance(hours=24)

        assert progress.recover("exam-1", user_id="user-1") is None
        assert progress.has_progress("exam-1", user_id="user-1") is False

    def test_finished_progress_on_disk_is_cleared(self, progress, clock):
        path = progress.path_for("exam-1", "user-1")
        path.parent.mkdir(parents=True)
        data = snapshot(last_updated=clock.now, exam_completed=True).to_dict()
        path.write_text(json.dumps(data), encoding="utf-8")

        assert progress.recover("exam-1", user_id="user-1") is None
        assert path.exists() is False

    def test_nothing_saved(self, progress):
        assert progress.recover("exam-1", user_id="user-1") is None

    def test_corrupt_file_is_discarded(self, progress, events):
        path = progress.path_for("exam-1", "user-1")
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        assert progress.recover("exam-1", user_id="user-1") is None
        assert path.exists() is False
        names = [call.args[0] for call in events.call_args_list]
        assert "PROGRESS_DISCARDED" in names

    def test_session_keyed_progress(self, progress):
        progress.save(snapshot(user_id=None, session_id="session-7"))

        assert progress.recover("exam-1", session_id="session-7") is not None
        assert progress.recover("exam-1", user_id="user-1") is None


class TestClear:
    """Removing snapshots."""

    def test_clear_removes_file(self, progress):
        progress.save(snapshot())

        assert progress.clear("exam-1", user_id="user-1") is True
        assert progress.has_progress("exam-1", user_id="user-1") is False

    def test_clear_missing(self, progress):
        assert progress.clear("exam-1", user_id="user-1") is False

    def test_same_progress_saved_again_after_clear(self, progress):
        progress.save(snapshot())
        progress.clear("exam-1", user_id="user-1")

        assert progress.save(snapshot()) is True
