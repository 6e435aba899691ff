"""
Connectivity tracking for the exam client.

NetworkStatusMonitor keeps a best-effort view of whether the exam backend is
reachable. It is driven by explicit online/offline events from the host
application and, while offline, by a background liveness probe.
"""

import threading
import time
from datetime import datetime
from typing import Callable, List, Optional

import httpx

from .event_log import SessionLogger, emit
from .models import NetworkMonitoringConfig, NetworkStatus, utcnow

StatusListener = Callable[[NetworkStatus], None]


def probe_reachability(url: str, timeout: float = 5.0) -> bool:
    """
    Check whether a known resource answers a cache-busted HEAD request.

    Args:
        url: Resource served by the exam backend's origin
        timeout: Request timeout in seconds

    Returns:
        True on a 2xx response, False on any other status or error
    """
    try:
        response = httpx.head(
            url,
            params={"_": str(int(time.time() * 1000))},
            headers={"Cache-Control": "no-cache"},
            timeout=timeout
        )
    except httpx.HTTPError:
        return False
    return response.is_success


class NetworkStatusMonitor:
    """Observable online/offline state with a background recovery probe."""

    def __init__(
        self,
        config: Optional[NetworkMonitoringConfig] = None,
        initially_online: bool = True,
        probe: Optional[Callable[[], bool]] = None,
        session_logger: Optional[SessionLogger] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.config = config or NetworkMonitoringConfig.default()
        self.session_logger = session_logger
        self.clock = clock
        self.probe = probe or (
            lambda: probe_reachability(self.config.probe_url, self.config.probe_timeout_seconds)
        )

        self._status = NetworkStatus(is_online=initially_online)
        self._lock = threading.Lock()
        self._listeners: List[StatusListener] = []

        self.monitoring_active = False
        self.probe_thread: Optional[threading.Thread] = None
        self.check_count = 0

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._status.is_online

    def current_status(self) -> NetworkStatus:
        """Return a snapshot of the current status."""
        with self._lock:
            return self._status.copy()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a listener called with the new status on every transition.

        Returns:
            A callable that unsubscribes the listener
        """
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: StatusListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def handle_online(self):
        """Connection restored (host event or successful probe)."""
        with self._lock:
            previous = self._status
            self._status = NetworkStatus(
                is_online=True,
                was_offline=previous.was_offline or not previous.is_online,
                reconnected_at=self.clock()
            )
            snapshot = self._status.copy()
        emit(self.session_logger, "NETWORK_ONLINE", "Connection restored")
        self._notify(snapshot)

    def handle_offline(self):
        """Connection lost."""
        with self._lock:
            self._status = NetworkStatus(is_online=False, was_offline=True, reconnected_at=None)
            snapshot = self._status.copy()
        emit(self.session_logger, "NETWORK_OFFLINE", "Connection lost")
        self._notify(snapshot)

    def _notify(self, status: NetworkStatus):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status.copy())
            except Exception as e:
                emit(self.session_logger, "ERROR", f"Network status listener failed: {e}")

    def check_now(self) -> bool:
        """
        Run one liveness probe and switch to online if it succeeds.

        Probe failures leave the status unchanged.

        Returns:
            True if the probe reached the backend
        """
        self.check_count += 1
        try:
            reachable = bool(self.probe())
        except Exception as e:
            emit(self.session_logger, "NETWORK_CHECK", f"Check #{self.check_count}: probe error {e}")
            return False

        status = "CONNECTED" if reachable else "OFFLINE"
        emit(self.session_logger, "NETWORK_CHECK", f"Check #{self.check_count}: backend status = {status}")
        if reachable and not self.is_online:
            self.handle_online()
        return reachable

    def start(self):
        """Start the background probe thread."""
        if self.monitoring_active:
            return

        self.monitoring_active = True
        self.probe_thread = threading.Thread(
            target=self._monitor_background,
            daemon=True
        )
        self.probe_thread.start()
        emit(self.session_logger, "NETWORK_MONITORING_STARTED",
             f"Probing every {self.config.probe_interval_seconds}s while offline")

    def stop(self):
        """Stop the background probe thread."""
        self.monitoring_active = False
        if self.probe_thread and self.probe_thread.is_alive():
            self.probe_thread.join(timeout=2.0)
        self.probe_thread = None
        emit(self.session_logger, "NETWORK_MONITORING_STOPPED", "")

    def _monitor_background(self):
        """Background probe loop; only probes while offline."""
        last_check_time = time.monotonic()
        check_interval = self.config.probe_interval_seconds

        while self.monitoring_active:
            current_time = time.monotonic()
            if current_time - last_check_time >= check_interval:
                last_check_time = current_time
                if not self.is_online:
                    self.check_now()
            time.sleep(0.5)  # Avoid busy waiting
