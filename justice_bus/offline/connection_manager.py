# =============================================================================
# justice_bus/offline/connection_manager.py
# Connectivity Watcher
# =============================================================================
"""
ConnectivityWatcher - tracks the online/offline state and triggers drains.

Signals:
- notify_online() / notify_offline(): the runtime's connectivity events
- notify_visibility(visible): the user returned to (or left) the app
- check_connection(): an active probe, optionally run on a background thread

Transitions:
- Offline -> Online: every registered drain callback runs
- Became visible while online: every registered drain callback runs
- Online -> Offline: status listeners are notified; writes keep queueing
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse

from justice_bus.logging import get_logger

logger = get_logger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"  # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    visible: bool = True
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0


def tcp_probe(url: str, timeout: float = 5.0) -> Callable[[], bool]:
    """
    Build a probe that reports whether the host of url accepts TCP connections.

    Args:
        url: Base URL of the API
        timeout: Connection timeout in seconds
    """
    parsed = urlparse(url)
    host = parsed.hostname
    port = parsed.port or (443 if parsed.scheme == "https" else 80)

    def probe() -> bool:
        if not host:
            return False
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    return probe


class ConnectivityWatcher:
    """
    Two-state (online/offline) watcher with drain triggers.

    Usage:
        watcher = ConnectivityWatcher(initial_online=True)
        watcher.register_drain(drainer.drain)
        watcher.notify_offline()
        watcher.notify_online()   # drainer.drain() runs here
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline

    def __init__(
        self,
        probe: Optional[Callable[[], bool]] = None,
        initial_online: Optional[bool] = None,
        check_interval_online: Optional[float] = None,
        check_interval_offline: Optional[float] = None,
    ):
        self._state = ConnectionState()
        self._probe = probe
        self._drains: List[Callable[[], object]] = []
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.RLock()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self.check_interval_online = check_interval_online or self.CHECK_INTERVAL_ONLINE
        self.check_interval_offline = check_interval_offline or self.CHECK_INTERVAL_OFFLINE

        if initial_online is not None:
            self._state.status = (
                ConnectionStatus.ONLINE if initial_online else ConnectionStatus.OFFLINE
            )
            if initial_online:
                self._state.last_online = datetime.now()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    # =========================================================================
    # RUNTIME SIGNALS
    # =========================================================================

    def notify_online(self) -> None:
        """The runtime reported connectivity."""
        self._set_status(ConnectionStatus.ONLINE)

    def notify_offline(self) -> None:
        """The runtime reported loss of connectivity."""
        self._set_status(ConnectionStatus.OFFLINE)

    def notify_visibility(self, visible: bool) -> None:
        """The app became visible (or hidden). Drains when visible and online."""
        with self._lock:
            self._state.visible = visible
        if visible and self.is_online:
            logger.debug("App visible while online, triggering drain")
            self._run_drains()

    def _set_status(self, status: ConnectionStatus) -> None:
        with self._lock:
            old_status = self._state.status
            self._state.status = status
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = datetime.now()
                self._state.consecutive_failures = 0
            else:
                self._state.consecutive_failures += 1

        if old_status == status:
            return

        logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
        self._notify_callbacks()
        if status == ConnectionStatus.ONLINE:
            self._run_drains()

    # =========================================================================
    # ACTIVE PROBING
    # =========================================================================

    def check_connection(self) -> ConnectionState:
        """
        Run the probe once and apply the result.

        Returns:
            Updated ConnectionState
        """
        if self._probe is None:
            return self._state

        self._state.last_check = datetime.now()
        try:
            online = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self._set_status(ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE)
        return self._state

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._probe is None:
            logger.debug("No connectivity probe configured, monitoring disabled")
            return
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectivityMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )

            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_drain(self, drain: Callable[[], object]) -> None:
        """Register a callable run whenever connectivity returns."""
        if drain not in self._drains:
            self._drains.append(drain)

    def unregister_drain(self, drain: Callable[[], object]) -> None:
        if drain in self._drains:
            self._drains.remove(drain)

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _run_drains(self) -> None:
        for drain in list(self._drains):
            try:
                drain()
            except Exception as e:
                logger.error(f"Error in drain trigger: {e}")

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "visible": self._state.visible,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
        }
