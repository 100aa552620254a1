# =============================================================================
# justice_bus/offline/offline_system.py
# Offline System Bootstrapper
# =============================================================================
"""
OfflineSystem - wires the store, queue, watcher and feature adapters together
and brings them up in order.

initialize() steps, each fail-soft (a failing step is logged and the next
one still runs):
1. Open the local store
2. Run the legacy migrations
3. Register drain triggers on the connectivity watcher (sync queue,
   verification attempts, events refresh)
4. If online, drain the sync queue, replay verification attempts and
   refresh the events snapshot if it is missing or older than events_max_age

Usage:
------
from justice_bus.offline import create_offline_system

system = create_offline_system(load_config())
system.initialize()

result = system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})
print(system.get_status_display())
"""

from __future__ import annotations
import threading
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from justice_bus.config import OfflineConfig
from justice_bus.errors import ErrorContext, safe_execute
from justice_bus.logging import get_logger, LogContext
from justice_bus.offline.connection_manager import (
    ConnectionStatus,
    ConnectivityWatcher,
    tcp_probe,
)
from justice_bus.offline.events_offline import EventsOffline
from justice_bus.offline.forms_offline import FormsOffline
from justice_bus.offline.http_client import ApiClient
from justice_bus.offline.local_store import (
    FlatStore,
    LocalStore,
    can_function_offline,
    probe_local_store,
)
from justice_bus.offline.migrations import LegacyMigrator
from justice_bus.offline.notifications_offline import NotificationsOffline
from justice_bus.offline.sync_queue import RetryPolicy, SyncDrainer, SyncQueue
from justice_bus.offline.verification_offline import (
    CredentialsVerifier,
    VerificationOffline,
)

logger = get_logger(__name__)


class OfflineSystem:
    """Entry point holding every offline component."""

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        drainer: SyncDrainer,
        watcher: ConnectivityWatcher,
        forms: FormsOffline,
        notifications: NotificationsOffline,
        verifications: VerificationOffline,
        events: EventsOffline,
        migrator: LegacyMigrator,
        events_max_age: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.queue = queue
        self.drainer = drainer
        self.watcher = watcher
        self.forms = forms
        self.notifications = notifications
        self.verifications = verifications
        self.events = events
        self.migrator = migrator
        self.events_max_age = events_max_age

        self.migration_results: Dict[str, int] = {}
        self._initialized = False
        self._init_lock = threading.Lock()

    def _drain_triggers(self) -> List[Callable[[], object]]:
        return [
            self.drainer.drain,
            self.verifications.sync_offline_verification_attempts,
            self.events.fetch_events,
        ]

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self) -> bool:
        """
        Bring the offline system up. Safe to call more than once.

        Returns:
            True if every step succeeded
        """
        with self._init_lock:
            if self._initialized:
                return True

            ok = True
            with LogContext(logger, "Initializing offline system"):
                with ErrorContext("Open local store") as ctx:
                    self.store.open()
                    can_function_offline(self.store)
                ok &= not ctx.failed

                with ErrorContext("Migrate legacy offline data") as ctx:
                    self.migration_results = self.migrator.run_all()
                ok &= not ctx.failed

                # A probe on an unknown state would fire the drains itself
                if self.watcher.status == ConnectionStatus.UNKNOWN:
                    with ErrorContext("Check connectivity"):
                        self.watcher.check_connection()

                with ErrorContext("Register drain triggers") as ctx:
                    for drain in self._drain_triggers():
                        self.watcher.register_drain(drain)
                ok &= not ctx.failed

                if self.watcher.is_online:
                    self.drain_all()
                    safe_execute(
                        self.events.refresh_if_stale,
                        self.events_max_age,
                        error_message="Error refreshing events data",
                    )

            self._initialized = True
            logger.info(f"Offline system initialized. Online: {self.watcher.is_online}")
            return ok

    # =========================================================================
    # SYNC
    # =========================================================================

    def drain_all(self) -> Dict[str, Any]:
        """
        Drain the sync queue and replay stored verification attempts.

        Returns:
            {"queue": DrainResult dict or None, "verifications": count}
        """
        result = safe_execute(
            self.drainer.drain,
            error_message="Error draining sync queue",
        )
        verified = safe_execute(
            self.verifications.sync_offline_verification_attempts,
            default=0,
            error_message="Error synchronizing offline verifications",
        )
        return {
            "queue": result.to_dict() if result is not None else None,
            "verifications": verified,
        }

    # =========================================================================
    # STATUS & DIAGNOSTICS
    # =========================================================================

    def get_status_display(self) -> Dict[str, Any]:
        """
        Get status information for display.

        Returns:
            Dict with connection, queue and storage status
        """
        last_result = self.drainer.last_result
        summary = safe_execute(self.queue.summary, error_message="Error summarizing sync queue")
        return {
            "connection": self.watcher.get_status_display(),
            "structured_store": self.store.structured,
            "pending_sync": safe_execute(self.queue.pending_count, default=0),
            "is_draining": self.drainer.is_draining,
            "last_drain": last_result.to_dict() if last_result else None,
            "queue_summary": summary.to_dict("records") if summary is not None else [],
            "pending_verifications": safe_execute(
                self.verifications.has_pending_offline_verifications,
                default=False,
            ),
            "migrations": dict(self.migration_results),
        }

    def cleanup(self) -> None:
        """Stop monitoring and release the store."""
        try:
            self.watcher.stop_monitoring()
            for drain in self._drain_triggers():
                self.watcher.unregister_drain(drain)
            self.store.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")
        self._initialized = False


def create_offline_system(
    config: Optional[OfflineConfig] = None,
    session: Optional[requests.Session] = None,
    watcher: Optional[ConnectivityWatcher] = None,
) -> OfflineSystem:
    """
    Build the default offline system from a configuration.

    Args:
        config: Offline configuration (defaults when None)
        session: requests.Session to send through (a new one when None)
        watcher: Connectivity watcher (a TCP probe against the API when None)

    Returns:
        An OfflineSystem ready for initialize()
    """
    config = config or OfflineConfig()

    store = probe_local_store(config.db_path, config.flat_path)
    # The flat tier doubles as legacy storage; reuse it when it is the primary
    flat_store = store if isinstance(store, FlatStore) else FlatStore(config.flat_path)

    client = ApiClient(
        config.api_base_url,
        timeout=config.request_timeout,
        headers=config.headers,
        session=session,
    )

    if watcher is None:
        watcher = ConnectivityWatcher(
            probe=tcp_probe(config.api_base_url, timeout=min(config.request_timeout, 5.0)),
            check_interval_online=config.check_interval_online,
            check_interval_offline=config.check_interval_offline,
        )

    queue = SyncQueue(store)
    drainer = SyncDrainer(
        queue,
        client,
        RetryPolicy(
            max_attempts=config.max_replay_attempts,
            backoff_base=config.backoff_base,
        ),
    )

    system = OfflineSystem(
        store=store,
        queue=queue,
        drainer=drainer,
        watcher=watcher,
        forms=FormsOffline(queue, client, watcher, flat_store),
        notifications=NotificationsOffline(queue, flat_store, config.notifications_path),
        verifications=VerificationOffline(
            store,
            CredentialsVerifier(client, config.verify_path),
            flat_store,
            expiration=timedelta(hours=config.verification_expiry_hours),
        ),
        events=EventsOffline(store, client, watcher, queue, config.events_path),
        migrator=LegacyMigrator(store, queue, flat_store, config.notifications_path),
        events_max_age=timedelta(hours=config.events_max_age_hours),
    )

    if config.start_monitoring:
        watcher.start_monitoring()

    return system
