# =============================================================================
# tests/integration/test_offline_system.py
# Integration Tests for the offline system (store → queue → replay)
# =============================================================================

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from justice_bus.config import OfflineConfig
from justice_bus.offline import (
    OFFLINE_FORM_MESSAGE,
    ConnectivityWatcher,
    FlatStore,
    StructuredStore,
    create_offline_system,
)
from justice_bus.offline.forms_offline import LEGACY_FORM_QUEUE_KEY
from justice_bus.offline.models import EventsSnapshot, utc_now_iso
from justice_bus.offline.verification_offline import LEGACY_VERIFICATION_PREFIX


class TestOfflineSystemIntegration:
    """
    End-to-end flows through the default wiring.

    Tests the flow:
    1. Bootstrap (store, migrations, drain triggers)
    2. Offline writes
    3. Reconnect and replay
    """

    @pytest.fixture
    def config(self, tmp_path):
        return OfflineConfig(
            data_dir=tmp_path / "offline",
            api_base_url="https://justicebus.example.org",
        )

    @pytest.fixture
    def session(self):
        session = MagicMock(spec=requests.Session, headers={})
        session.request.return_value = make_response(200, {"success": True})
        return session

    @pytest.fixture
    def watcher(self):
        return ConnectivityWatcher(initial_online=False)

    @pytest.fixture
    def system(self, config, session, watcher):
        system = create_offline_system(config, session=session, watcher=watcher)
        yield system
        system.cleanup()

    def _requested_urls(self, session):
        return [call.kwargs["url"] for call in session.request.call_args_list]

    def _posted_urls(self, session):
        return [
            call.kwargs["url"]
            for call in session.request.call_args_list
            if call.kwargs["method"] == "POST"
        ]

    def test_default_wiring_uses_structured_store(self, system):
        assert isinstance(system.store, StructuredStore)
        assert system.initialize()

    def test_initialize_is_idempotent(self, system, watcher):
        system.initialize()
        system.initialize()

        assert system.is_initialized
        assert len(watcher._drains) == 3

    def test_offline_form_replayed_on_reconnect(self, system, session, watcher):
        system.initialize()

        result = system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})
        assert result == {"status": "offline", "message": OFFLINE_FORM_MESSAGE}
        session.request.assert_not_called()
        assert system.queue.pending_count() == 1

        watcher.notify_online()

        session.request.assert_any_call(
            method="POST",
            url="https://justicebus.example.org/api/forms",
            json={"name": "Test"},
            timeout=15.0,
        )
        assert self._posted_urls(session) == ["https://justicebus.example.org/api/forms"]
        assert system.queue.pending_count() == 0
        assert system.drainer.last_result.succeeded == 1

    def test_failed_replay_survives_for_next_cycle(self, system, session, watcher):
        system.initialize()
        system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})
        session.request.return_value = make_response(503)

        watcher.notify_online()
        assert system.queue.pending()[0].attempts == 1

        session.request.return_value = make_response(200)
        watcher.notify_offline()
        watcher.notify_online()
        assert system.queue.pending_count() == 0

    def test_notifications_and_verifications_replayed(self, system, session, watcher):
        system.initialize()
        system.notifications.queue_notification("appointment-reminder", {"to": "6155550100"})
        system.verifications.store_offline_verification_attempt("6155550100", "123456")

        watcher.notify_online()

        urls = self._requested_urls(session)
        assert "https://justicebus.example.org/api/notifications/process-queued" in urls
        assert "https://justicebus.example.org/api/auth/callback/credentials" in urls
        assert not system.verifications.has_pending_offline_verifications()

    def test_visibility_triggers_drain_while_online(self, system, session, watcher):
        system.initialize()
        watcher.notify_online()
        system.notifications.queue_notification("welcome", {})

        watcher.notify_visibility(True)

        assert system.queue.pending_count() == 0

    def test_initialize_online_drains_existing_queue(self, config, session):
        first = create_offline_system(config, session=session,
                                      watcher=ConnectivityWatcher(initial_online=False))
        first.initialize()
        first.forms.submit_with_offline_support("/api/forms", {"name": "Queued"})
        first.cleanup()

        second = create_offline_system(config, session=session,
                                       watcher=ConnectivityWatcher(initial_online=True))
        second.initialize()

        assert second.queue.pending_count() == 0
        assert self._posted_urls(session) == ["https://justicebus.example.org/api/forms"]
        second.cleanup()

    def test_legacy_data_migrated_on_initialize(self, config, session, watcher):
        legacy = FlatStore(config.flat_path).open()
        legacy.set_item(LEGACY_FORM_QUEUE_KEY, [
            {"url": "/api/forms", "data": {"name": "Old"}, "timestamp": "2024-04-01T00:00:00.000Z"},
        ])
        legacy.set_item(f"{LEGACY_VERIFICATION_PREFIX}6155550100", {
            "phone": "6155550100", "code": "1", "timestamp": 0,
        })

        system = create_offline_system(config, session=session, watcher=watcher)
        system.initialize()

        assert system.migration_results["forms"] == 1
        assert system.queue.pending()[0].data == {"name": "Old"}

        # Expired legacy verification is purged without a request
        watcher.notify_online()
        assert self._posted_urls(session) == ["https://justicebus.example.org/api/forms"]
        assert system.verifications.legacy_attempts() == []
        system.cleanup()

    def test_flat_fallback_when_structured_unavailable(self, tmp_path, session, watcher):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = OfflineConfig(data_dir=blocker, flat_filename="legacy.json")
        # data_dir is a file, so neither tier can use it; the probe ends in memory
        system = create_offline_system(config, session=session, watcher=watcher)

        assert isinstance(system.store, FlatStore)
        assert system.initialize()

        result = system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})
        assert result["status"] == "offline"
        assert system.queue.pending_count() == 1

    def test_status_display(self, system, watcher):
        system.initialize()
        system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})

        status = system.get_status_display()

        assert status["connection"]["status"] == "offline"
        assert status["structured_store"] is True
        assert status["pending_sync"] == 1
        assert status["last_drain"] is None
        assert status["queue_summary"][0]["storeType"] == "forms"

    def test_drain_all_reports_both_tiers(self, system):
        system.initialize()
        system.verifications.store_offline_verification_attempt("6155550100", "123456")

        report = system.drain_all()

        assert report["queue"]["attempted"] == 0
        assert report["verifications"] == 1

    def test_reconnect_refreshes_events(self, system, session, watcher, sample_events_payload):
        system.initialize()
        session.request.return_value = make_response(200, sample_events_payload)

        watcher.notify_online()

        assert "https://justicebus.example.org/api/events" in self._requested_urls(session)
        cached = system.events.get_events_data()
        assert [e["id"] for e in cached.events] == ["evt-1", "evt-2"]

    def test_online_initialize_fetches_missing_events(self, config, session, sample_events_payload):
        session.request.return_value = make_response(200, sample_events_payload)
        system = create_offline_system(config, session=session,
                                       watcher=ConnectivityWatcher(initial_online=True))

        system.initialize()

        assert system.events.get_event_by_id("evt-2")["title"] == "Driver's License Restoration"
        system.cleanup()

    def test_online_initialize_keeps_fresh_events(self, config, session):
        config.events_max_age_hours = 1
        system = create_offline_system(config, session=session,
                                       watcher=ConnectivityWatcher(initial_online=True))
        system.events.store_events_data(EventsSnapshot(
            events=[{"id": "evt-1", "title": "Clinic"}],
            last_updated=utc_now_iso(),
        ))

        system.initialize()

        assert system.events_max_age == timedelta(hours=1)
        assert "https://justicebus.example.org/api/events" not in self._requested_urls(session)
        system.cleanup()
