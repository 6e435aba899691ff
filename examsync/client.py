"""
Wiring of the exam client components from a ClientConfig.

Host applications create one ExamClient per process, call start() once, and
forward their connectivity events to client.monitor.
"""

from pathlib import Path
from typing import Callable, Optional

import httpx

from .access import AccessGate
from .connectivity import NetworkStatusMonitor
from .coordinator import SubmissionCoordinator
from .event_log import EventLog
from .lifecycle import ExamSessionLifecycle
from .models import ClientConfig
from .offline_queue import DurableSubmissionQueue
from .progress import ProgressStore
from .remote_store import SupabaseStore
from .retry import RetryPolicy


class ExamClient:
    """Main controller owning the store, monitor, queue and coordinators."""

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.BaseTransport] = None,
        initially_online: bool = True,
        event_log: Optional[EventLog] = None,
        probe: Optional[Callable[[], bool]] = None
    ):
        self.config = config
        self.event_log = event_log or EventLog(Path(config.log_path))
        logger = self.event_log.log

        self.store = SupabaseStore.from_config(config, transport=transport)
        self.retry = RetryPolicy(config.retry, session_logger=logger)
        self.monitor = NetworkStatusMonitor(
            config.network_monitoring,
            initially_online=initially_online,
            probe=probe,
            session_logger=logger
        )
        self.queue = DurableSubmissionQueue.from_config(config.offline_queue, session_logger=logger)
        self.progress = ProgressStore.from_config(
            config.progress,
            key_file=config.offline_queue.key_file,
            session_logger=logger
        )
        self.lifecycle = ExamSessionLifecycle(
            self.store,
            retry_policy=self.retry,
            config=config.session,
            session_logger=logger
        )
        self.access = AccessGate(self.store, retry_policy=self.retry, session_logger=logger)
        self.coordinator = SubmissionCoordinator(
            self.store,
            self.lifecycle,
            self.queue,
            self.monitor,
            session_logger=logger,
            replay_pause_seconds=config.offline_queue.replay_pause_seconds,
            progress=self.progress
        )

    def start(self):
        """
        Check connectivity once, then start background probing and automatic
        replay on reconnect. Queued work is sent right away when the backend
        is reachable.
        """
        self.event_log.log("CLIENT_START", f"{len(self.queue)} pending submission(s)")
        self.coordinator.attach()

        was_online = self.monitor.is_online
        reachable = self.monitor.check_now()
        if not reachable:
            if self.monitor.is_online:
                self.monitor.handle_offline()
        elif was_online and self.queue.retryable():
            # an offline-to-online switch already replayed through the listener
            self.coordinator.replay_pending()

        self.monitor.start()

    def stop(self):
        self.monitor.stop()
        self.coordinator.detach()
        self.store.close()
        self.event_log.log("CLIENT_STOP", "")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()
