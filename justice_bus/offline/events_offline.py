# =============================================================================
# justice_bus/offline/events_offline.py
# Offline cache of the Justice Bus events dataset
# =============================================================================
"""
Events data rarely changes, so a single snapshot of the whole dataset is
cached under one key and overwritten on every successful online read. Offline
page views (and failed fetches) read that snapshot instead.
"""

from __future__ import annotations
from datetime import timedelta
from typing import Any, Dict, Optional

import pandas as pd

from justice_bus.errors import (
    DataValidationError,
    ReplayFailure,
    StoreUnavailableError,
    error_boundary,
)
from justice_bus.logging import get_logger
from justice_bus.offline.connection_manager import ConnectivityWatcher
from justice_bus.offline.local_store import LocalStore, Partitions
from justice_bus.offline.models import DEFAULT_CONTACT_INFO, EventsSnapshot, utc_now_iso
from justice_bus.offline.sync_queue import SyncQueue

logger = get_logger(__name__)

SNAPSHOT_KEY = "current"
EVENTS_STORE_TYPE = "events"
DEFAULT_EVENTS_PATH = "/api/events"


def parse_timestamp(value: Any, field: str) -> pd.Timestamp:
    """Parse an ISO datetime into a UTC timestamp or raise DataValidationError."""
    try:
        parsed = pd.to_datetime(value, utc=True)
    except (TypeError, ValueError) as e:
        raise DataValidationError(
            f"{field} is not a valid datetime",
            field=field,
            expected="ISO-8601 datetime",
            actual=repr(value),
        ) from e
    if pd.isna(parsed):
        raise DataValidationError(f"{field} is missing", field=field)
    return parsed


def validate_events_snapshot(raw: Any) -> EventsSnapshot:
    """
    Validate an events payload as served by the events endpoint.

    Raises:
        DataValidationError: the payload does not have the expected shape
    """
    if not isinstance(raw, dict):
        raise DataValidationError(
            "Events data must be an object",
            expected="dict",
            actual=type(raw).__name__,
        )

    events = raw.get("events")
    if not isinstance(events, list) or not all(isinstance(e, dict) for e in events):
        raise DataValidationError("events must be a list of objects", field="events")

    for event in events:
        if not event.get("id"):
            raise DataValidationError("Every event needs an id", field="events.id")

    last_updated = raw.get("lastUpdated")
    parse_timestamp(last_updated, "lastUpdated")

    contact_info = raw.get("contactInfo")
    if contact_info is None:
        contact_info = dict(DEFAULT_CONTACT_INFO)
    elif not isinstance(contact_info, dict):
        raise DataValidationError("contactInfo must be an object", field="contactInfo")

    return EventsSnapshot(
        events=events,
        last_updated=last_updated,
        contact_info={**DEFAULT_CONTACT_INFO, **contact_info},
    )


class EventsOffline:
    """Read-through cache of the events dataset."""

    PARTITION = Partitions.EVENTS

    def __init__(
        self,
        store: LocalStore,
        client,
        watcher: ConnectivityWatcher,
        queue: Optional[SyncQueue] = None,
        api_path: str = DEFAULT_EVENTS_PATH,
    ):
        self.store = store
        self.client = client
        self.watcher = watcher
        self.queue = queue
        self.api_path = api_path

    def store_events_data(self, snapshot: EventsSnapshot) -> None:
        """
        Overwrite the cached snapshot.

        Raises:
            StoreUnavailableError: the local store rejected the write
        """
        self.store.put(self.PARTITION, snapshot.to_record(), key=SNAPSHOT_KEY)

    @error_boundary(default_return=None)
    def get_events_data(self) -> Optional[EventsSnapshot]:
        """Return the cached snapshot, or None if nothing is cached or readable."""
        record = self.store.get(self.PARTITION, SNAPSHOT_KEY)
        if record is None:
            return None
        record.pop("id", None)
        return EventsSnapshot.from_record(record)

    def fetch_events(self) -> Optional[EventsSnapshot]:
        """
        Fetch events from the server and refresh the cache.

        Returns:
            The fresh snapshot when online, otherwise the cached one
        """
        if not self.watcher.is_online:
            return self.get_events_data()

        try:
            snapshot = validate_events_snapshot(self.client.get_json(self.api_path))
        except (ReplayFailure, DataValidationError) as e:
            logger.warning(f"Error fetching events, using cached copy: {e}")
            return self.get_events_data()

        try:
            self.store_events_data(snapshot)
        except StoreUnavailableError as e:
            logger.error(f"Error caching events data: {e}")
        return snapshot

    def get_event_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self.get_events_data()
        return snapshot.find_event(event_id) if snapshot else None

    def is_stale(self, max_age: timedelta = timedelta(hours=24)) -> bool:
        """True when there is no snapshot or it is older than max_age."""
        snapshot = self.get_events_data()
        if snapshot is None or not snapshot.events:
            return True
        try:
            last_updated = parse_timestamp(snapshot.last_updated, "lastUpdated")
        except DataValidationError:
            return True
        return pd.Timestamp.now(tz="UTC") - last_updated > pd.Timedelta(max_age)

    def refresh_if_stale(self, max_age: timedelta = timedelta(hours=24)) -> Optional[EventsSnapshot]:
        """Fetch a new snapshot if the cached one is missing or too old."""
        if self.is_stale(max_age) and self.watcher.is_online:
            return self.fetch_events()
        return self.get_events_data()

    def queue_events_update(self, snapshot: EventsSnapshot) -> bool:
        """
        Queue an events update for the server and apply it to the cache.

        Returns:
            True if the update was queued
        """
        if self.queue is None:
            logger.error("No sync queue configured for events updates")
            return False

        try:
            self.queue.enqueue(EVENTS_STORE_TYPE, snapshot.to_record(), self.api_path, "POST")
            self.store_events_data(snapshot)
            return True
        except StoreUnavailableError as e:
            logger.error(f"Error queuing events update: {e}")
            return False
    def update_event(self, event: Dict[str, Any]) -> bool:
        """
        Send one changed event to the server and apply it to the cache.

        Online the event is PUT to the events endpoint; offline the PUT is
        queued for the next drain. The cached copy is replaced either way.

        Returns:
            False if the server rejected the update or it could not be kept
        """
        event_id = event.get("id")
        if not event_id:
            logger.error("Cannot update an event without an id")
            return False

        path = f"{self.api_path}/{event_id}"
        try:
            if self.watcher.is_online:
                self.client.send(path, "PUT", event)
            elif self.queue is not None:
                self.queue.enqueue(EVENTS_STORE_TYPE, event, path, "PUT")
            else:
                logger.warning(f"No sync queue configured, event {event_id} updated locally only")
        except (ReplayFailure, StoreUnavailableError) as e:
            logger.error(f"Error updating event with ID {event_id}: {e}")
            return False

        return self._replace_cached_event(event)

    def _replace_cached_event(self, event: Dict[str, Any]) -> bool:
        snapshot = self.get_events_data()
        if snapshot is None:
            return True

        snapshot.events = [
            {**event, "lastSyncedAt": utc_now_iso()} if e.get("id") == event["id"] else e
            for e in snapshot.events
        ]
        try:
            self.store_events_data(snapshot)
            return True
        except StoreUnavailableError as e:
            logger.error(f"Error caching updated event {event['id']}: {e}")
            return False
