# =============================================================================
# tests/unit/test_verification_offline.py
# Unit Tests for offline phone verification
# =============================================================================

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from justice_bus.errors import ReplayFailure
from justice_bus.offline.local_store import Partitions
from justice_bus.offline.verification_offline import (
    LEGACY_VERIFICATION_PREFIX,
    CredentialsVerifier,
    VerificationOffline,
)

HOUR_MS = 60 * 60 * 1000
NOW_MS = 1_714_000_000_000


class FakeClock:
    """Settable millisecond clock"""

    def __init__(self, now=NOW_MS):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def verifier():
    return MagicMock(return_value=True)


@pytest.fixture
def verifications(structured_store, verifier, flat_store, clock):
    return VerificationOffline(structured_store, verifier, flat_store, clock=clock)


class TestStoreAttempt:

    def test_store_attempt(self, verifications, structured_store):
        assert verifications.store_offline_verification_attempt("6155550100", "123456")

        record = structured_store.get(Partitions.VERIFICATIONS, f"6155550100_{NOW_MS}")
        assert record["code"] == "123456"
        assert record["timestamp"] == NOW_MS

    def test_store_failure_falls_back_to_flat_tier(self, broken_store, verifier, flat_store, clock):
        verifications = VerificationOffline(broken_store, verifier, flat_store, clock=clock)

        assert verifications.store_offline_verification_attempt("6155550100", "123456")

        legacy = flat_store.get_item(f"{LEGACY_VERIFICATION_PREFIX}6155550100")
        assert legacy == {"phone": "6155550100", "code": "123456", "timestamp": NOW_MS}
        assert verifications.has_pending_offline_verifications()

    def test_both_tiers_failing(self, broken_store, verifier, clock):
        verifications = VerificationOffline(broken_store, verifier, clock=clock)
        assert not verifications.store_offline_verification_attempt("6155550100", "1")


class TestSyncAttempts:

    def test_replays_and_deletes(self, verifications, verifier, structured_store):
        verifications.store_offline_verification_attempt("6155550100", "123456")

        assert verifications.sync_offline_verification_attempts() == 1

        verifier.assert_called_once_with("6155550100", "123456")
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_expired_attempt_purged_without_replay(self, verifications, verifier, structured_store, clock):
        verifications.store_offline_verification_attempt("6155550100", "123456")
        clock.now += 25 * HOUR_MS

        assert verifications.sync_offline_verification_attempts() == 0

        verifier.assert_not_called()
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_attempt_within_window_is_replayed(self, verifications, verifier, clock):
        verifications.store_offline_verification_attempt("6155550100", "123456")
        clock.now += 23 * HOUR_MS

        assert verifications.sync_offline_verification_attempts() == 1
        verifier.assert_called_once()

    def test_rejected_attempt_is_still_deleted(self, verifications, verifier, structured_store):
        verifier.side_effect = ReplayFailure("HTTP 401", status_code=401)
        verifications.store_offline_verification_attempt("6155550100", "000000")

        assert verifications.sync_offline_verification_attempts() == 1
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_legacy_tier_used_when_structured_empty(self, verifications, verifier, flat_store):
        flat_store.set_item(
            f"{LEGACY_VERIFICATION_PREFIX}9015550100",
            {"phone": "9015550100", "code": "654321", "timestamp": NOW_MS - HOUR_MS},
        )

        assert verifications.sync_offline_verification_attempts() == 1

        verifier.assert_called_once_with("9015550100", "654321")
        assert flat_store.item_keys(LEGACY_VERIFICATION_PREFIX) == []

    def test_legacy_tier_skipped_when_structured_processed(self, verifications, verifier, flat_store):
        verifications.store_offline_verification_attempt("6155550100", "123456")
        flat_store.set_item(
            f"{LEGACY_VERIFICATION_PREFIX}9015550100",
            {"phone": "9015550100", "code": "654321", "timestamp": NOW_MS},
        )

        assert verifications.sync_offline_verification_attempts() == 1
        assert flat_store.item_keys(LEGACY_VERIFICATION_PREFIX) == [
            f"{LEGACY_VERIFICATION_PREFIX}9015550100"
        ]

    def test_malformed_legacy_entry_dropped(self, verifications, flat_store):
        flat_store.set_item(f"{LEGACY_VERIFICATION_PREFIX}x", {"phone": "x"})

        assert verifications.legacy_attempts() == []
        assert flat_store.item_keys(LEGACY_VERIFICATION_PREFIX) == []

    def test_unexpected_verifier_error_does_not_stop_sync(self, verifications, verifier, structured_store, clock):
        verifications.store_offline_verification_attempt("6155550100", "111111")
        clock.now += 1
        verifications.store_offline_verification_attempt("9015550100", "222222")
        verifier.side_effect = [RuntimeError("boom"), True]

        assert verifications.sync_offline_verification_attempts() == 2

        assert verifier.call_count == 2
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_malformed_record_dropped_and_rest_replayed(self, verifications, verifier, structured_store):
        structured_store.put(Partitions.VERIFICATIONS, {"id": "broken", "phone": "6155550100"})
        verifications.store_offline_verification_attempt("9015550100", "222222")

        assert verifications.sync_offline_verification_attempts() == 1

        verifier.assert_called_once_with("9015550100", "222222")
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_concurrent_syncs_replay_each_attempt_once(self, verifications, verifier, structured_store):
        verifications.store_offline_verification_attempt("6155550100", "123456")
        started = threading.Event()
        release = threading.Event()

        def slow_verify(phone, code):
            started.set()
            release.wait(timeout=5)
            return True

        verifier.side_effect = slow_verify

        results = []
        worker = threading.Thread(
            target=lambda: results.append(verifications.sync_offline_verification_attempts())
        )
        worker.start()
        assert started.wait(timeout=5)

        overlapping = verifications.sync_offline_verification_attempts()
        release.set()
        worker.join(timeout=5)

        assert overlapping == 0
        assert results == [1]
        assert verifier.call_count == 1
        assert structured_store.get_all(Partitions.VERIFICATIONS) == []

    def test_store_unavailable_returns_zero(self, broken_store, verifier, clock):
        verifications = VerificationOffline(broken_store, verifier, clock=clock)
        assert verifications.sync_offline_verification_attempts() == 0


class TestPendingCheck:

    def test_no_attempts(self, verifications):
        assert not verifications.has_pending_offline_verifications()

    def test_only_expired_attempts(self, verifications, clock):
        verifications.store_offline_verification_attempt("6155550100", "123456")
        clock.now += 25 * HOUR_MS
        assert not verifications.has_pending_offline_verifications()

    def test_custom_expiration(self, structured_store, verifier, clock):
        verifications = VerificationOffline(
            structured_store, verifier, expiration=timedelta(hours=1), clock=clock
        )
        verifications.store_offline_verification_attempt("6155550100", "123456")
        clock.now += 2 * HOUR_MS

        assert not verifications.has_pending_offline_verifications()


class TestCredentialsVerifier:

    def test_posts_credentials(self, mock_client):
        assert CredentialsVerifier(mock_client)("6155550100", "123456")

        mock_client.send.assert_called_once_with(
            "/api/auth/callback/credentials",
            "POST",
            {"phone": "6155550100", "code": "123456", "redirect": False},
        )

    def test_failure_propagates(self, failing_client):
        with pytest.raises(ReplayFailure):
            CredentialsVerifier(failing_client)("6155550100", "123456")
