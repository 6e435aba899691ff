"""
Error hierarchy for the exam session client.

Remote failures are classified by the store adapter itself, so callers only
need to check the exception type to decide between retrying, queuing and
reporting.
"""

from typing import Optional


class ExamSyncError(Exception):
    """Base class for every error raised by examsync."""


class ConfigError(ExamSyncError, ValueError):
    """Configuration file is missing required values or is inconsistent."""


class ValidationError(ExamSyncError):
    """Submission is missing identifiers or data. Never retried or queued."""


class RemoteError(ExamSyncError):
    """A call to the remote store did not succeed."""


class NetworkError(RemoteError):
    """The remote store could not be reached (transport failure, timeout, gateway)."""


class RemoteRejection(RemoteError):
    """The remote store answered with a logical error (constraint, RLS denial)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details
        self.hint = hint


class NotFound(RemoteRejection):
    """A row expected to exist was not returned."""


class QueueExhaustion(ExamSyncError):
    """A queued submission has used all of its retry attempts."""

    def __init__(self, submission_id: str, retry_count: int, max_retries: int):
        super().__init__(
            f"Submission {submission_id} exhausted its retries ({retry_count}/{max_retries})"
        )
        self.submission_id = submission_id
        self.retry_count = retry_count
        self.max_retries = max_retries


class AccessDenied(ExamSyncError):
    """Credentials, assignment or profile do not allow the exam to start."""


class LifecycleError(ExamSyncError):
    """Base class for session lifecycle failures carried in a LifecycleResult."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause

    @property
    def is_network(self) -> bool:
        return isinstance(self.cause, NetworkError)


class CreateError(LifecycleError):
    pass


class StartError(LifecycleError):
    pass


class IncrementError(LifecycleError):
    pass


class CompleteError(LifecycleError):
    pass


class FetchError(LifecycleError):
    pass


NETWORK_ERROR_PATTERNS = (
    "failed to fetch",
    "network error",
    "connection failed",
    "timeout",
    "timed out",
    "connection refused",
    "network request failed",
    "fetch error",
    "networkerror",
)


def is_network_error(error: Optional[BaseException]) -> bool:
    """
    Decide whether an exception means the network, not the server, failed.

    Typed errors answer directly. Foreign exceptions (raised by callables
    handed to the retry helper) fall back to matching their message and
    class name against known network failure patterns.
    """
    if error is None:
        return False
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, (RemoteRejection, ValidationError)):
        return False
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    message = str(error).lower()
    name = type(error).__name__.lower()
    return any(pattern in message or pattern in name for pattern in NETWORK_ERROR_PATTERNS)
