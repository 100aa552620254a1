# =============================================================================
# justice_bus/offline/migrations.py
# One-shot migration of legacy flat-storage data
# =============================================================================
"""
LegacyMigrator - moves data written by the flat (legacy) tier into the
structured store.

Each migration leaves a marker in the app-settings partition:

    {"key": "migration:forms", "version": 1, "count": 2, "migratedAt": "..."}

A migration whose marker is at the current version is never repeated, even if
the legacy key is still present. The legacy key is removed only after the
marker is written.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from justice_bus.errors import JusticeBusError, MigrationFailure
from justice_bus.logging import get_logger
from justice_bus.offline.events_offline import SNAPSHOT_KEY
from justice_bus.offline.forms_offline import FORMS_STORE_TYPE, LEGACY_FORM_QUEUE_KEY
from justice_bus.offline.local_store import FlatStore, LocalStore, Partitions
from justice_bus.offline.models import EventsSnapshot, SyncQueueItem, utc_now_iso
from justice_bus.offline.notifications_offline import (
    DEFAULT_NOTIFICATIONS_PATH,
    LEGACY_NOTIFICATION_QUEUE_KEY,
    NOTIFICATIONS_STORE_TYPE,
)
from justice_bus.offline.serialization import to_json_safe
from justice_bus.offline.sync_queue import SyncQueue

logger = get_logger(__name__)

MIGRATION_VERSION = 1

# Legacy key for the events list cached by older clients
LEGACY_EVENTS_KEY = "justice_bus_events"


class LegacyMigrator:
    """Runs each legacy migration at most once per MIGRATION_VERSION."""

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        flat_store: Optional[FlatStore],
        notifications_path: str = DEFAULT_NOTIFICATIONS_PATH,
    ):
        self.store = store
        self.queue = queue
        self.flat_store = flat_store
        self.notifications_path = notifications_path

    # =========================================================================
    # MARKERS
    # =========================================================================

    @staticmethod
    def _marker_key(name: str) -> str:
        return f"migration:{name}"

    def get_marker(self, name: str) -> Optional[Dict[str, Any]]:
        return self.store.get(Partitions.SETTINGS, self._marker_key(name))

    def is_migrated(self, name: str) -> bool:
        marker = self.get_marker(name)
        return bool(marker) and marker.get("version", 0) >= MIGRATION_VERSION

    def _write_marker(self, name: str, count: int) -> None:
        self.store.put(
            Partitions.SETTINGS,
            {
                "key": self._marker_key(name),
                "version": MIGRATION_VERSION,
                "count": count,
                "migratedAt": utc_now_iso(),
            },
        )

    def _run(self, name: str, legacy_key: str, migrate: Callable[[Any], int]) -> int:
        """
        Run one migration guarded by its marker.

        Returns:
            Number of records migrated (0 when already done or nothing to do)

        Raises:
            MigrationFailure: the legacy data could not be moved
        """
        if self.flat_store is None:
            return 0

        try:
            if self.is_migrated(name):
                logger.debug(f"Migration {name} already applied")
                self.flat_store.remove_item(legacy_key)
                return 0

            legacy = self.flat_store.get_item(legacy_key)
            if not legacy:
                return 0

            count = migrate(legacy)
            self._write_marker(name, count)
            self.flat_store.remove_item(legacy_key)
        except MigrationFailure:
            raise
        except (JusticeBusError, KeyError, TypeError, ValueError) as e:
            raise MigrationFailure(
                f"Migration {name} failed: {e}",
                migration=name,
                legacy_key=legacy_key,
            ) from e

        logger.info(f"Migrated {count} {name} records from legacy storage")
        return count

    def _enqueue_all(self, items: List[SyncQueueItem]) -> int:
        """
        Write items to the sync queue once every one of them is known to be valid.

        A malformed legacy entry fails the migration before anything is
        written, so a retried run cannot queue the same entry twice.
        """
        records = [to_json_safe(item.to_record()) for item in items]
        for record in records:
            self.queue.store.put(SyncQueue.PARTITION, record)
        return len(records)

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    def migrate_forms(self) -> int:
        """Move the legacy form queue into the sync queue."""
        def migrate(forms: List[Dict[str, Any]]) -> int:
            items = [
                SyncQueueItem(
                    store_type=FORMS_STORE_TYPE,
                    data=form["data"],
                    api_path=form["url"],
                    timestamp=form.get("timestamp") or utc_now_iso(),
                )
                for form in forms
            ]
            return self._enqueue_all(items)

        return self._run("forms", LEGACY_FORM_QUEUE_KEY, migrate)

    def migrate_notifications(self) -> int:
        """Move the legacy notification queue into the sync queue."""
        def migrate(notifications: List[Dict[str, Any]]) -> int:
            items = []
            for notification in notifications:
                if not notification.get("workflowKey"):
                    raise ValueError("queued notification has no workflowKey")
                items.append(SyncQueueItem(
                    store_type=NOTIFICATIONS_STORE_TYPE,
                    data=notification,
                    api_path=self.notifications_path,
                    timestamp=notification.get("timestamp") or utc_now_iso(),
                ))
            return self._enqueue_all(items)

        return self._run("notifications", LEGACY_NOTIFICATION_QUEUE_KEY, migrate)

    def migrate_events(self) -> int:
        """
        Turn the legacy cached events list into the events snapshot.

        An existing snapshot is left alone; it came from a newer fetch.
        """
        def migrate(events: Any) -> int:
            if isinstance(events, dict):
                events = events.get("events", [])
            if not isinstance(events, list):
                raise TypeError("legacy events cache is not a list")
            if self.store.get(Partitions.EVENTS, SNAPSHOT_KEY) is not None:
                return 0

            events = [e for e in events if isinstance(e, dict)]
            synced = [e["lastSyncedAt"] for e in events if e.get("lastSyncedAt")]
            snapshot = EventsSnapshot(
                events=events,
                last_updated=max(synced) if synced else utc_now_iso(),
            )
            self.store.put(Partitions.EVENTS, snapshot.to_record(), key=SNAPSHOT_KEY)
            return len(events)

        return self._run("events", LEGACY_EVENTS_KEY, migrate)

    def run_all(self) -> Dict[str, int]:
        """
        Run every migration; a failure is logged and the rest still run.

        Returns:
            Records migrated per migration name (-1 for a failed migration)
        """
        results: Dict[str, int] = {}
        steps = [
            ("forms", self.migrate_forms),
            ("notifications", self.migrate_notifications),
            ("events", self.migrate_events),
        ]
        for name, step in steps:
            try:
                results[name] = step()
            except MigrationFailure as e:
                logger.error(f"Skipping migration {name}: {e}")
                results[name] = -1
        return results
