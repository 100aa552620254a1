# =============================================================================
# tests/unit/test_forms_offline.py
# Unit Tests for form and notification queueing
# =============================================================================

import pytest

from justice_bus.offline.forms_offline import (
    LEGACY_FORM_QUEUE_KEY,
    OFFLINE_FORM_MESSAGE,
    FormsOffline,
)
from justice_bus.offline.notifications_offline import (
    DEFAULT_NOTIFICATIONS_PATH,
    LEGACY_NOTIFICATION_QUEUE_KEY,
    NotificationsOffline,
)
from justice_bus.offline.sync_queue import SyncQueue


class TestFormsOffline:
    """Form submission with offline support"""

    def test_online_returns_server_reply(self, sync_queue, mock_client, online_watcher):
        mock_client.post_json.return_value = {"id": "case-1", "status": "received"}
        forms = FormsOffline(sync_queue, mock_client, online_watcher)

        result = forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        assert result == {"id": "case-1", "status": "received"}
        mock_client.post_json.assert_called_once_with(
            "/api/forms", {"name": "Test"}, raise_for_status=False
        )
        assert sync_queue.pending_count() == 0

    def test_offline_queues_and_returns_offline_result(self, sync_queue, mock_client, offline_watcher):
        forms = FormsOffline(sync_queue, mock_client, offline_watcher)

        result = forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        assert result == {"status": "offline", "message": OFFLINE_FORM_MESSAGE}
        mock_client.post_json.assert_not_called()

        pending = sync_queue.pending()
        assert len(pending) == 1
        assert pending[0].store_type == "forms"
        assert pending[0].api_path == "/api/forms"
        assert pending[0].data == {"name": "Test"}

    def test_transport_failure_while_online_is_queued(self, sync_queue, failing_client, online_watcher):
        forms = FormsOffline(sync_queue, failing_client, online_watcher)

        result = forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        assert result["status"] == "offline"
        assert sync_queue.pending_count() == 1

    def test_store_failure_falls_back_to_legacy_queue(self, broken_store, flat_store, mock_client, offline_watcher):
        forms = FormsOffline(SyncQueue(broken_store), mock_client, offline_watcher, flat_store)

        result = forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        assert result["status"] == "offline"
        legacy = flat_store.get_item(LEGACY_FORM_QUEUE_KEY)
        assert len(legacy) == 1
        assert legacy[0]["url"] == "/api/forms"
        assert legacy[0]["data"] == {"name": "Test"}

    def test_both_tiers_failing_returns_error(self, broken_store, mock_client, offline_watcher):
        forms = FormsOffline(SyncQueue(broken_store), mock_client, offline_watcher)

        result = forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        assert result["status"] == "error"


class TestNotificationsOffline:
    """Notification trigger queueing"""

    def test_queue_notification(self, sync_queue):
        notifications = NotificationsOffline(sync_queue)

        assert notifications.queue_notification(
            "appointment-reminder",
            {"to": "615-555-0100"},
            {"scheduledAt": "2024-05-04T09:00:00Z"},
        )

        item = sync_queue.pending()[0]
        assert item.store_type == "notifications"
        assert item.api_path == DEFAULT_NOTIFICATIONS_PATH
        assert item.data["workflowKey"] == "appointment-reminder"
        assert item.data["options"] == {"scheduledAt": "2024-05-04T09:00:00Z"}

    def test_options_default_to_empty(self, sync_queue):
        NotificationsOffline(sync_queue).queue_notification("welcome", {})
        assert sync_queue.pending()[0].data["options"] == {}

    def test_legacy_fallback(self, broken_store, flat_store):
        notifications = NotificationsOffline(SyncQueue(broken_store), flat_store)

        assert notifications.queue_notification("welcome", {"to": "x"})
        assert flat_store.get_item(LEGACY_NOTIFICATION_QUEUE_KEY)[0]["workflowKey"] == "welcome"

    def test_no_tier_available(self, broken_store):
        assert not NotificationsOffline(SyncQueue(broken_store)).queue_notification("welcome", {})
