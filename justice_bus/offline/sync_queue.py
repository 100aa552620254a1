# =============================================================================
# justice_bus/offline/sync_queue.py
# Sync Queue and Drainer
# =============================================================================
"""
SyncQueue - requests waiting to be replayed, persisted in the sync-queue partition.
SyncDrainer - walks the queue and replays each unsynced item once per pass.

Replay policy:
- 2xx: the item is marked synced, then deleted
- anything else: the failure is recorded on the item, which stays queued
- no retry inside a pass; the next trigger (reconnect, visibility, manual)
  starts a new pass

Concurrent drain() calls coalesce: while a pass is in flight further triggers
only request one follow-up pass, run by the drainer that is already active.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from justice_bus.errors import ReplayFailure
from justice_bus.logging import get_logger, LogContext
from justice_bus.offline.local_store import LocalStore, Partitions
from justice_bus.offline.models import SyncQueueItem, utc_now_iso

logger = get_logger(__name__)


class SyncQueue:
    """
    Queue of pending requests stored in the local store.

    Usage:
        queue = SyncQueue(store)
        queue.enqueue("forms", {"name": "Test"}, "/api/forms")
        queue.pending_count()
    """

    PARTITION = Partitions.SYNC_QUEUE

    def __init__(self, store: LocalStore):
        self.store = store

    def enqueue(
        self,
        store_type: str,
        data: Any,
        api_path: str,
        method: str = "POST",
    ) -> SyncQueueItem:
        """
        Append an unsynced item.

        Raises:
            StoreUnavailableError: the local store rejected the write
        """
        item = SyncQueueItem(
            store_type=store_type,
            data=data,
            api_path=api_path,
            method=method.upper(),
        )
        item.id = self.store.put(self.PARTITION, item.to_record())
        logger.debug(f"Queued {store_type} item {item.id} for {item.method} {api_path}")
        return item

    def all_items(self) -> List[SyncQueueItem]:
        return [SyncQueueItem.from_record(r) for r in self.store.get_all(self.PARTITION)]

    def pending(self) -> List[SyncQueueItem]:
        """Unsynced items in insertion order."""
        return [item for item in self.all_items() if not item.synced]

    def pending_count(self) -> int:
        return len(self.pending())

    def get(self, item_id: int) -> Optional[SyncQueueItem]:
        record = self.store.get(self.PARTITION, item_id)
        return SyncQueueItem.from_record(record) if record else None

    def save(self, item: SyncQueueItem) -> None:
        self.store.put(self.PARTITION, item.to_record())

    def mark_synced(self, item: SyncQueueItem) -> None:
        item.synced = True
        item.last_attempt = utc_now_iso()
        item.last_error = None
        self.save(item)

    def record_failure(self, item: SyncQueueItem, error: str) -> None:
        item.attempts += 1
        item.last_attempt = utc_now_iso()
        item.last_error = error
        self.save(item)

    def remove(self, item_id: int) -> None:
        self.store.delete(self.PARTITION, item_id)

    def purge_synced(self) -> int:
        """Delete items already marked synced. Returns the number removed."""
        purged = 0
        for item in self.all_items():
            if item.synced:
                self.remove(item.id)
                purged += 1
        return purged

    def summary(self) -> pd.DataFrame:
        """Pending/synced counts per store type."""
        df = self.store.to_dataframe(self.PARTITION)
        if df.empty or "storeType" not in df.columns:
            return pd.DataFrame(columns=["storeType", "pending", "synced", "attempts"])

        df["synced"] = df["synced"].fillna(False).astype(bool)
        if "attempts" not in df.columns:
            df["attempts"] = 0
        df["attempts"] = df["attempts"].fillna(0).astype(int)
        return (
            df.assign(pending=~df["synced"])
            .groupby("storeType", as_index=False)
            .agg(pending=("pending", "sum"), synced=("synced", "sum"), attempts=("attempts", "sum"))
        )


@dataclass
class RetryPolicy:
    """
    Limits on replaying an item across drain passes.

    max_attempts: stop replaying an item after this many failures (None = no limit)
    backoff_base: wait backoff_base ** attempts seconds after a failure before
                  the next replay (0 = replay on every pass)
    backoff_cap: upper bound on that wait, in seconds
    """
    max_attempts: Optional[int] = None
    backoff_base: float = 0.0
    backoff_cap: Optional[float] = None

    def is_exhausted(self, item: SyncQueueItem) -> bool:
        return self.max_attempts is not None and item.attempts >= self.max_attempts

    def next_attempt_at(self, item: SyncQueueItem) -> Optional[datetime]:
        if not self.backoff_base or not item.attempts or not item.last_attempt:
            return None
        delay = self.backoff_base ** item.attempts
        if self.backoff_cap is not None:
            delay = min(delay, self.backoff_cap)
        last = datetime.fromisoformat(item.last_attempt.replace("Z", "+00:00"))
        return last + timedelta(seconds=delay)

    def is_due(self, item: SyncQueueItem, now: Optional[datetime] = None) -> bool:
        due_at = self.next_attempt_at(item)
        if due_at is None:
            return True
        return (now or datetime.now(timezone.utc)) >= due_at


@dataclass
class DrainResult:
    """Outcome of a drain() call."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    purged: int = 0
    passes: int = 0
    coalesced: bool = False
    errors: List[str] = field(default_factory=list)
    finished_at: Optional[str] = None

    def merge(self, other: DrainResult) -> DrainResult:
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.purged += other.purged
        self.passes += other.passes
        self.errors.extend(other.errors)
        self.finished_at = other.finished_at or self.finished_at
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "purged": self.purged,
            "passes": self.passes,
            "coalesced": self.coalesced,
            "finished_at": self.finished_at,
        }


class SyncDrainer:
    """
    Replays queued items against the server.

    Usage:
        drainer = SyncDrainer(queue, client)
        result = drainer.drain()
    """

    def __init__(
        self,
        queue: SyncQueue,
        client,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.queue = queue
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.last_result: Optional[DrainResult] = None

        self._state_lock = threading.Lock()
        self._draining = False
        self._rerun_requested = False
        self._callbacks: List[Callable[[DrainResult], None]] = []

    @property
    def is_draining(self) -> bool:
        return self._draining

    def drain(self) -> DrainResult:
        """
        Replay every unsynced item once.

        If another drain is already running, this call returns immediately
        with coalesced=True and the running drainer performs one more pass
        when its current pass ends.
        """
        with self._state_lock:
            if self._draining:
                self._rerun_requested = True
                logger.debug("Drain already in progress, follow-up pass requested")
                return DrainResult(coalesced=True)
            self._draining = True

        result = DrainResult()
        try:
            while True:
                result.merge(self._drain_once())
                with self._state_lock:
                    if not self._rerun_requested:
                        self._draining = False
                        break
                    self._rerun_requested = False
        except BaseException:
            with self._state_lock:
                self._draining = False
                self._rerun_requested = False
            raise

        self.last_result = result
        self._notify_callbacks(result)
        return result

    def _drain_once(self) -> DrainResult:
        result = DrainResult(passes=1)

        with LogContext(logger, "Draining sync queue"):
            items = self.queue.all_items()
            for item in items:
                if item.synced:
                    self.queue.remove(item.id)
                    result.purged += 1

            for item in (i for i in items if not i.synced):
                if self.retry_policy.is_exhausted(item):
                    logger.warning(
                        f"Skipping sync item {item.id}: {item.attempts} failed attempts"
                    )
                    result.skipped += 1
                    continue
                if not self.retry_policy.is_due(item):
                    result.skipped += 1
                    continue

                result.attempted += 1
                try:
                    self.client.send(item.api_path, item.method, item.data)
                except ReplayFailure as e:
                    logger.warning(f"Failed to sync item {item.id}: {e.message}")
                    self.queue.record_failure(item, e.message)
                    result.failed += 1
                    result.errors.append(e.message)
                    continue

                self.queue.mark_synced(item)
                self.queue.remove(item.id)
                result.succeeded += 1

        result.finished_at = utc_now_iso()
        logger.info(
            f"Sync pass complete: {result.succeeded} success, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result

    def register_callback(self, callback: Callable[[DrainResult], None]) -> None:
        """Register a callback run after each completed drain."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[DrainResult], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, result: DrainResult) -> None:
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Error in drain callback: {e}")
