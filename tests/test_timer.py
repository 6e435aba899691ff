"""
Tests for the session countdown timer.
"""

from datetime import timedelta
from unittest.mock import Mock

from examsync.models import ExamSession
from examsync.timer import SessionTimer


def started_session(clock, minutes=30):
    return ExamSession(
        id="session-1",
        user_id="user-1",
        status="started",
        attempts_taken=1,
        max_attempts=2,
        start_time=clock.now,
        end_time=clock.now + timedelta(minutes=minutes)
    )


class TestRemainingTime:
    """Test remaining time calculations."""

    def test_remaining_time(self, clock):
        timer = SessionTimer(started_session(clock), clock=clock)
        clock.advance(minutes=10, seconds=15)

        assert timer.get_remaining_time() == timedelta(minutes=19, seconds=45)
        assert timer.format_remaining_time() == "00:19:45"
        assert timer.is_time_expired() is False

    def test_never_negative(self, clock):
        timer = SessionTimer(started_session(clock), clock=clock)
        clock.advance(hours=2)

        assert timer.get_remaining_time() == timedelta(0)
        assert timer.format_remaining_time() == "00:00:00"
        assert timer.is_time_expired() is True

    def test_no_end_time(self, clock):
        session = ExamSession(id="session-1", user_id="user-1", status="pending", attempts_taken=0, max_attempts=2)
        timer = SessionTimer(session, clock=clock)

        assert timer.is_time_expired() is False
        assert timer.format_remaining_time() == "infinite"

    def test_hours_formatting(self, clock):
        timer = SessionTimer(started_session(clock, minutes=150), clock=clock)

        assert timer.format_remaining_time() == "02:30:00"


class TestTimeUp:
    """Test the one-shot time-up callback."""

    def test_check_before_end(self, clock):
        timer = SessionTimer(started_session(clock), clock=clock)
        on_time_up = Mock()

        assert timer.check(on_time_up) is False
        on_time_up.assert_not_called()

    def test_check_fires_once(self, clock, events):
        timer = SessionTimer(started_session(clock), session_logger=events, clock=clock)
        on_time_up = Mock()
        clock.advance(minutes=30)

        assert timer.check(on_time_up) is True
        assert timer.check(on_time_up) is False

        on_time_up.assert_called_once()
        events.assert_called_once_with("EXAM_TIMEOUT", "session=session-1 exam time finished")

    def test_watch_thread(self, clock):
        timer = SessionTimer(started_session(clock), clock=clock)
        clock.advance(minutes=31)
        on_time_up = Mock()

        timer.start_watch(on_time_up)
        timer.timer_thread.join(timeout=2.0)
        timer.stop_watch()

        on_time_up.assert_called_once()
        assert timer.timer_thread is None
