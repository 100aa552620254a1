# =============================================================================
# justice_bus/offline/forms_offline.py
# Form submissions with offline support
# =============================================================================
"""
Form submissions that survive loss of connectivity.

Online, a submission goes straight to the server and the server's reply is
returned unchanged. Offline (or when the request cannot reach the server) the
submission is queued and the caller receives an "offline" result instead of
an exception.
"""

from __future__ import annotations
from typing import Any, Dict, Optional

from justice_bus.errors import ReplayFailure, StoreUnavailableError
from justice_bus.logging import get_logger
from justice_bus.offline.connection_manager import ConnectivityWatcher
from justice_bus.offline.local_store import FlatStore
from justice_bus.offline.models import utc_now_iso
from justice_bus.offline.sync_queue import SyncQueue

logger = get_logger(__name__)

FORMS_STORE_TYPE = "forms"

# Legacy flat key holding [{url, data, timestamp}, ...]
LEGACY_FORM_QUEUE_KEY = "offline_form_queue"

OFFLINE_FORM_MESSAGE = (
    "Your form has been saved and will be submitted when you're back online."
)
FORM_SAVE_FAILED_MESSAGE = (
    "Your form could not be saved on this device. Please try again when you're back online."
)


def offline_result(message: str = OFFLINE_FORM_MESSAGE) -> Dict[str, str]:
    return {"status": "offline", "message": message}


class FormsOffline:
    """Form submission adapter over the sync queue."""

    def __init__(
        self,
        queue: SyncQueue,
        client,
        watcher: ConnectivityWatcher,
        flat_store: Optional[FlatStore] = None,
    ):
        self.queue = queue
        self.client = client
        self.watcher = watcher
        self.flat_store = flat_store

    def submit_with_offline_support(self, url: str, payload: Dict[str, Any]) -> Any:
        """
        Submit a form, queueing it when offline.

        Args:
            url: API endpoint to submit to
            payload: Form data

        Returns:
            The server's JSON reply when online, otherwise
            {"status": "offline", "message": ...}
        """
        if self.watcher.is_online:
            try:
                return self.client.post_json(url, payload, raise_for_status=False)
            except ReplayFailure as e:
                logger.warning(f"Form submission to {url} failed, queueing for later: {e.message}")

        return self.store_form_data(url, payload)

    def store_form_data(self, url: str, payload: Dict[str, Any]) -> Dict[str, str]:
        """
        Queue a form for replay, falling back to the legacy flat queue.

        Returns:
            The offline result, or an error result when neither tier accepted it
        """
        try:
            self.queue.enqueue(FORMS_STORE_TYPE, payload, url)
            logger.info("Form data stored for offline use")
            return offline_result()
        except StoreUnavailableError as e:
            logger.error(f"Error storing form data: {e}")

        if self.flat_store is not None:
            try:
                legacy = self.flat_store.get_item(LEGACY_FORM_QUEUE_KEY) or []
                legacy.append({"url": url, "data": payload, "timestamp": utc_now_iso()})
                self.flat_store.set_item(LEGACY_FORM_QUEUE_KEY, legacy)
                logger.info("Form data stored in legacy queue as fallback")
                return offline_result()
            except StoreUnavailableError as e:
                logger.error(f"Error storing form data in legacy queue: {e}")

        return {"status": "error", "message": FORM_SAVE_FAILED_MESSAGE}
