# =============================================================================
# justice_bus/offline/notifications_offline.py
# Notification triggers queued while offline
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Optional

from justice_bus.errors import StoreUnavailableError
from justice_bus.logging import get_logger
from justice_bus.offline.local_store import FlatStore
from justice_bus.offline.models import utc_now_iso
from justice_bus.offline.sync_queue import SyncQueue

logger = get_logger(__name__)

NOTIFICATIONS_STORE_TYPE = "notifications"
DEFAULT_NOTIFICATIONS_PATH = "/api/notifications/process-queued"

# Legacy flat key holding [{workflowKey, payload, options, timestamp}, ...]
LEGACY_NOTIFICATION_QUEUE_KEY = "notification_queue"


class NotificationsOffline:
    """Queues notification workflow triggers for delivery once back online."""

    def __init__(
        self,
        queue: SyncQueue,
        flat_store: Optional[FlatStore] = None,
        api_path: str = DEFAULT_NOTIFICATIONS_PATH,
    ):
        self.queue = queue
        self.flat_store = flat_store
        self.api_path = api_path

    def queue_notification(
        self,
        workflow_key: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Store a notification trigger for later delivery.

        Args:
            workflow_key: Notification workflow to trigger
            payload: Trigger payload (recipients, data, ...)
            options: Trigger options such as scheduledAt

        Returns:
            True if either storage tier accepted it
        """
        notification = {
            "workflowKey": workflow_key,
            "payload": payload,
            "options": options or {},
            "timestamp": utc_now_iso(),
        }

        try:
            self.queue.enqueue(NOTIFICATIONS_STORE_TYPE, notification, self.api_path, "POST")
            logger.info(f"Notification queued for later delivery: {workflow_key}")
            return True
        except StoreUnavailableError as e:
            logger.error(f"Error storing notification, falling back to legacy queue: {e}")

        if self.flat_store is None:
            return False

        try:
            legacy = self.flat_store.get_item(LEGACY_NOTIFICATION_QUEUE_KEY) or []
            legacy.append(notification)
            self.flat_store.set_item(LEGACY_NOTIFICATION_QUEUE_KEY, legacy)
            logger.info(f"Notification queued in legacy queue for later delivery: {workflow_key}")
            return True
        except StoreUnavailableError as e:
            logger.error(f"Error queueing notification: {e}")
            return False
