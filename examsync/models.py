"""
Data models for exam sessions, offline submissions and client configuration.

Provides type-safe structures built from remote rows and local JSON.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


class SessionStatus:
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    EXPIRED = "expired"
    ATTEMPT_LIMIT_REACHED = "attempt_limit_reached"

    TERMINAL = (COMPLETED, EXPIRED, ATTEMPT_LIMIT_REACHED)


class TestKind:
    __test__ = False  # not a pytest class

    RELIABILITY = "reliability"
    PSYCHOMETRIC = "psychometric"
    TURNOVER = "turnover"

    ALL = (RELIABILITY, PSYCHOMETRIC, TURNOVER)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the store into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class ExamSession:
    """
    One user's attempt context for one exam or psychometric test.

    Attributes:
        exam_active: Activity flag of the associated exam/test. None when the
                     row was loaded without its exam, which counts as active.
        duration_minutes: Configured duration of the associated exam/test.
    """
    id: str
    user_id: str
    status: str
    attempts_taken: int
    max_attempts: int
    exam_id: Optional[str] = None
    psychometric_test_id: Optional[str] = None
    test_type: str = TestKind.RELIABILITY
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    company_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    exam_active: Optional[bool] = None
    duration_minutes: Optional[int] = None

    @property
    def is_psychometric(self) -> bool:
        return self.test_type == TestKind.PSYCHOMETRIC

    @property
    def target_id(self) -> Optional[str]:
        return self.exam_id or self.psychometric_test_id

    @staticmethod
    def from_dict(data: dict) -> 'ExamSession':
        """
        Create an ExamSession from a session row.

        The row may embed its exam (``exams``) or psychometric test
        (``psychometric_tests``); RPC rows flatten them into ``exam_*`` columns.
        """
        exam_active = None
        duration = None

        exam = data.get('exams') or data.get('exam')
        test = data.get('psychometric_tests') or data.get('psychometric_test')
        if isinstance(exam, dict):
            if 'estado' in exam:
                exam_active = exam['estado'] == 'activo'
            duration = exam.get('duracion_minutos')
        elif isinstance(test, dict):
            if 'is_active' in test:
                exam_active = bool(test['is_active'])
            duration = test.get('duration_minutes')
        elif data.get('exam_duracion_minutos') is not None:
            duration = data['exam_duracion_minutos']

        test_type = data.get('test_type') or (
            TestKind.PSYCHOMETRIC if data.get('psychometric_test_id') and not data.get('exam_id')
            else TestKind.RELIABILITY
        )

        return ExamSession(
            id=data['id'],
            user_id=data['user_id'],
            status=data.get('status') or SessionStatus.PENDING,
            attempts_taken=int(data.get('attempts_taken') or 0),
            max_attempts=int(data.get('max_attempts') or 2),
            exam_id=data.get('exam_id'),
            psychometric_test_id=data.get('psychometric_test_id'),
            test_type=test_type,
            start_time=parse_timestamp(data.get('start_time')),
            end_time=parse_timestamp(data.get('end_time')),
            company_id=data.get('company_id'),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
            exam_active=exam_active,
            duration_minutes=int(duration) if duration else None
        )


BIG_FIVE_TRAITS = ("apertura", "responsabilidad", "extraversion", "amabilidad", "neuroticismo")


@dataclass
class PersonalityResponse:
    """Answer to one psychometric item on its numeric scale."""
    question_id: str
    response_value: int

    def to_dict(self) -> dict:
        return {"questionId": self.question_id, "responseValue": self.response_value}

    @staticmethod
    def from_dict(data: dict) -> 'PersonalityResponse':
        return PersonalityResponse(question_id=data['questionId'], response_value=data['responseValue'])


@dataclass
class PsychometricScores:
    """Big Five trait scores computed from the personality responses."""
    apertura: float
    responsabilidad: float
    extraversion: float
    amabilidad: float
    neuroticismo: float

    def to_dict(self) -> dict:
        return {trait: getattr(self, trait) for trait in BIG_FIVE_TRAITS}

    @staticmethod
    def from_dict(data: dict) -> 'PsychometricScores':
        return PsychometricScores(**{trait: data[trait] for trait in BIG_FIVE_TRAITS})


@dataclass
class PendingSubmission:
    """
    A locally durable record of exam answers not yet committed remotely.

    Psychometric submissions carry ``responses`` and ``scores`` instead of
    questions and answers; ``scores`` being set is what marks them.
    """
    id: str
    exam_id: str
    user_id: str
    questions: List[Any]
    answers: List[Any]
    timestamp: str
    session_id: Optional[str] = None
    attempt_id: Optional[str] = None
    is_anonymous_session: bool = False
    kiosk_mode: bool = False
    assignment_id: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 5
    responses: List[Dict[str, Any]] = field(default_factory=list)
    scores: Optional[Dict[str, float]] = None

    @property
    def is_psychometric(self) -> bool:
        return self.scores is not None

    @property
    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @staticmethod
    def make_id(exam_id: str, user_id: str, when: datetime) -> str:
        return f"{exam_id}_{user_id}_{int(when.timestamp() * 1000)}"

    @staticmethod
    def make_psychometric_id(user_id: str, when: datetime) -> str:
        return f"psychometric_{user_id}_{int(when.timestamp() * 1000)}"

    def to_dict(self) -> dict:
        """Serialize using the local-storage key names."""
        data = {
            "id": self.id,
            "examId": self.exam_id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "currentAttemptId": self.attempt_id,
            "isAnonymousSession": self.is_anonymous_session,
            "kioskMode": self.kiosk_mode,
            "assignmentId": self.assignment_id,
            "questions": self.questions,
            "answers": self.answers,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }
        if self.is_psychometric:
            data["responses"] = self.responses
            data["scores"] = self.scores
        return data

    @staticmethod
    def from_dict(data: dict) -> 'PendingSubmission':
        return PendingSubmission(
            id=data['id'],
            exam_id=data['examId'],
            user_id=data['userId'],
            questions=list(data['questions']),
            answers=list(data['answers']),
            timestamp=data['timestamp'],
            session_id=data.get('sessionId'),
            attempt_id=data.get('currentAttemptId'),
            is_anonymous_session=bool(data.get('isAnonymousSession', False)),
            kiosk_mode=bool(data.get('kioskMode', False)),
            assignment_id=data.get('assignmentId'),
            retry_count=int(data.get('retryCount', 0)),
            max_retries=int(data.get('maxRetries', 5)),
            responses=list(data.get("responses") or []),
            scores=data.get("scores")
        )


@dataclass
class NetworkStatus:
    """Snapshot of connectivity as seen by a NetworkStatusMonitor."""
    is_online: bool
    was_offline: bool = False
    reconnected_at: Optional[datetime] = None

    def copy(self) -> 'NetworkStatus':
        return replace(self)


@dataclass
class ExamCredential:
    """Username/password pair bound to an exam or test."""
    id: str
    username: str
    test_type: str
    user_email: Optional[str] = None
    exam_id: Optional[str] = None
    psychometric_test_id: Optional[str] = None
    is_used: bool = False
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    @staticmethod
    def from_dict(data: dict) -> 'ExamCredential':
        return ExamCredential(
            id=data['id'],
            username=data.get('username') or '',
            test_type=data.get('test_type') or TestKind.RELIABILITY,
            user_email=data.get('user_email'),
            exam_id=data.get('exam_id'),
            psychometric_test_id=data.get('psychometric_test_id'),
            is_used=bool(data.get('is_used', False)),
            expires_at=parse_timestamp(data.get('expires_at'))
        )


@dataclass
class ExamAssignment:
    """An exam or test assigned to a user."""
    id: str
    user_id: str
    status: str
    test_type: str = TestKind.RELIABILITY
    exam_id: Optional[str] = None
    psychometric_test_id: Optional[str] = None
    assigned_at: Optional[datetime] = None

    @staticmethod
    def from_dict(data: dict) -> 'ExamAssignment':
        return ExamAssignment(
            id=data['id'],
            user_id=data['user_id'],
            status=data.get('status') or 'pending',
            test_type=data.get('test_type') or TestKind.RELIABILITY,
            exam_id=data.get('exam_id'),
            psychometric_test_id=data.get('psychometric_test_id'),
            assigned_at=parse_timestamp(data.get('assigned_at'))
        )


@dataclass
class NetworkMonitoringConfig:
    """Liveness probe settings."""
    probe_url: str
    probe_interval_seconds: int
    probe_timeout_seconds: float

    @staticmethod
    def from_dict(data: dict) -> 'NetworkMonitoringConfig':
        return NetworkMonitoringConfig(
            probe_url=data.get('probe_url', NetworkMonitoringConfig.default().probe_url),
            probe_interval_seconds=data.get('probe_interval_seconds', 30),
            probe_timeout_seconds=float(data.get('probe_timeout_seconds', 5.0))
        )

    @staticmethod
    def default() -> 'NetworkMonitoringConfig':
        return NetworkMonitoringConfig(
            probe_url="http://localhost:8080/favicon.ico",
            probe_interval_seconds=30,
            probe_timeout_seconds=5.0
        )


@dataclass
class RetryConfig:
    """Backoff settings for network-classified failures."""
    max_attempts: int
    base_delay_seconds: float
    factor: float
    jitter: float

    @staticmethod
    def from_dict(data: dict) -> 'RetryConfig':
        return RetryConfig(
            max_attempts=data.get('max_attempts', 3),
            base_delay_seconds=float(data.get('base_delay_seconds', 1.0)),
            factor=float(data.get('factor', 2.0)),
            jitter=float(data.get('jitter', 0.1))
        )

    @staticmethod
    def default() -> 'RetryConfig':
        return RetryConfig(max_attempts=3, base_delay_seconds=1.0, factor=2.0, jitter=0.1)


@dataclass
class OfflineQueueConfig:
    """Durable queue settings."""
    path: str
    max_retries: int
    key_file: Optional[str] = None
    replay_pause_seconds: float = 1.0

    @staticmethod
    def from_dict(data: dict) -> 'OfflineQueueConfig':
        return OfflineQueueConfig(
            path=data.get('path', 'pending_submissions.json'),
            max_retries=data.get('max_retries', 5),
            key_file=data.get('key_file'),
            replay_pause_seconds=float(data.get('replay_pause_seconds', 1.0))
        )

    @staticmethod
    def default() -> 'OfflineQueueConfig':
        return OfflineQueueConfig(path='pending_submissions.json', max_retries=5)


@dataclass
class ProgressConfig:
    """Local snapshots of in-progress exams."""
    directory: str
    max_age_hours: float = 24.0

    @staticmethod
    def from_dict(data: dict) -> 'ProgressConfig':
        return ProgressConfig(
            directory=data.get('dir', 'exam_progress'),
            max_age_hours=float(data.get('max_age_hours', 24.0))
        )

    @staticmethod
    def default() -> 'ProgressConfig':
        return ProgressConfig(directory='exam_progress')


@dataclass
class SessionConfig:
    """Defaults applied when sessions are created and started."""
    default_max_attempts: int
    default_duration_minutes: int

    @staticmethod
    def from_dict(data: dict) -> 'SessionConfig':
        return SessionConfig(
            default_max_attempts=data.get('default_max_attempts', 2),
            default_duration_minutes=data.get('default_duration_minutes', 30)
        )

    @staticmethod
    def default() -> 'SessionConfig':
        return SessionConfig(default_max_attempts=2, default_duration_minutes=30)


@dataclass
class ClientConfig:
    """
    Configuration for the exam session client.

    Attributes:
        supabase_url: Base URL of the Supabase project
        supabase_key: Anon or service key sent as apikey/bearer
        request_timeout_seconds: Timeout for each REST call
        log_path: File receiving the event log
    """
    supabase_url: str
    supabase_key: str
    request_timeout_seconds: float
    log_path: str
    network_monitoring: NetworkMonitoringConfig = field(default_factory=NetworkMonitoringConfig.default)
    retry: RetryConfig = field(default_factory=RetryConfig.default)
    offline_queue: OfflineQueueConfig = field(default_factory=OfflineQueueConfig.default)
    session: SessionConfig = field(default_factory=SessionConfig.default)
    progress: ProgressConfig = field(default_factory=ProgressConfig.default)

    @staticmethod
    def from_dict(data: dict) -> 'ClientConfig':
        """Create ClientConfig from dictionary."""
        return ClientConfig(
            supabase_url=data.get('supabase_url', ''),
            supabase_key=data.get('supabase_key', ''),
            request_timeout_seconds=float(data.get('request_timeout_seconds', 10.0)),
            log_path=data.get('log_path', 'examsync.log'),
            network_monitoring=NetworkMonitoringConfig.from_dict(data.get('network_monitoring', {})),
            retry=RetryConfig.from_dict(data.get('retry', {})),
            offline_queue=OfflineQueueConfig.from_dict(data.get('offline_queue', {})),
            session=SessionConfig.from_dict(data.get('session', {})),
            progress=ProgressConfig.from_dict(data.get('progress', {}))
        )

    def validate(self) -> tuple[bool, str]:
        """
        Validate configuration consistency.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if self.supabase_url and not self.supabase_url.startswith(("http://", "https://")):
            return False, f"supabase_url must be an http(s) URL, got '{self.supabase_url}'"

        if self.request_timeout_seconds <= 0:
            return False, "request_timeout_seconds must be positive"

        if self.network_monitoring.probe_interval_seconds < 1:
            return False, "probe_interval_seconds must be at least 1"

        if self.retry.max_attempts < 1:
            return False, "retry.max_attempts must be at least 1"

        if self.retry.base_delay_seconds < 0 or self.retry.factor < 1:
            return False, "retry.base_delay_seconds must be >= 0 and retry.factor >= 1"

        if not 0 <= self.retry.jitter < 1:
            return False, "retry.jitter must be between 0 and 1"

        if self.offline_queue.max_retries < 1:
            return False, "offline_queue.max_retries must be at least 1"

        if self.session.default_max_attempts < 1:
            return False, "session.default_max_attempts must be at least 1"

        if self.session.default_duration_minutes < 1 or self.session.default_duration_minutes > 480:
            return False, "session.default_duration_minutes must be between 1 and 480 minutes (8 hours)"

        if self.progress.max_age_hours <= 0:
            return False, "progress.max_age_hours must be positive"

        return True, ""

    @staticmethod
    def default() -> 'ClientConfig':
        """Return default configuration (no remote store configured)."""
        return ClientConfig(
            supabase_url='',
            supabase_key='',
            request_timeout_seconds=10.0,
            log_path='examsync.log'
        )


def as_row(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert datetimes in an update payload to ISO strings."""
    return {
        key: format_timestamp(value) if isinstance(value, datetime) else value
        for key, value in values.items()
    }
