# =============================================================================
# justice_bus/offline/verification_offline.py
# Phone verification attempts captured while offline
# =============================================================================
"""
Verification codes entered while offline are kept and replayed once the
device is back online.

Rules:
- Attempts older than the expiration window (24h by default) are deleted
  without being replayed; stale codes must never be retried.
- Every other attempt is replayed once and deleted whatever the outcome.
- When the structured store rejects a write, the attempt goes to the legacy
  flat tier under "offline_verification_<phone>" so it is not lost.
"""

from __future__ import annotations
import threading
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

from justice_bus.errors import ReplayFailure, StoreUnavailableError
from justice_bus.logging import get_logger
from justice_bus.offline.local_store import FlatStore, LocalStore, Partitions
from justice_bus.offline.models import VerificationAttempt, epoch_ms

logger = get_logger(__name__)

LEGACY_VERIFICATION_PREFIX = "offline_verification_"
EXPIRATION_TIME = timedelta(hours=24)
DEFAULT_VERIFY_PATH = "/api/auth/callback/credentials"


class CredentialsVerifier:
    """Replays a verification attempt against the credentials sign-in endpoint."""

    def __init__(self, client, path: str = DEFAULT_VERIFY_PATH):
        self.client = client
        self.path = path

    def __call__(self, phone: str, code: str) -> bool:
        self.client.send(
            self.path,
            "POST",
            {"phone": phone, "code": code, "redirect": False},
        )
        return True


class VerificationOffline:
    """Stores and replays offline verification attempts."""

    PARTITION = Partitions.VERIFICATIONS

    def __init__(
        self,
        store: LocalStore,
        verifier: Callable[[str, str], bool],
        flat_store: Optional[FlatStore] = None,
        expiration: timedelta = EXPIRATION_TIME,
        clock: Callable[[], int] = epoch_ms,
    ):
        self.store = store
        self.verifier = verifier
        self.flat_store = flat_store
        self.expiration_ms = int(expiration.total_seconds() * 1000)
        self.clock = clock

        self._sync_lock = threading.Lock()
        self._syncing = False
        self._rerun_requested = False

    def is_expired(self, attempt: VerificationAttempt) -> bool:
        return attempt.age_ms(self.clock()) > self.expiration_ms

    def store_offline_verification_attempt(self, phone: str, code: str) -> bool:
        """
        Store a verification attempt for later synchronization.

        Args:
            phone: The phone number being verified
            code: The verification code entered

        Returns:
            Success status
        """
        attempt = VerificationAttempt(phone=phone, code=code, timestamp=self.clock())

        try:
            self.store.put(self.PARTITION, attempt.to_record())
            return True
        except StoreUnavailableError as e:
            logger.error(f"Failed to store offline verification attempt: {e}")

        if self.flat_store is None:
            return False

        try:
            self.flat_store.set_item(
                f"{LEGACY_VERIFICATION_PREFIX}{phone}",
                {"phone": phone, "code": code, "timestamp": attempt.timestamp},
            )
            return True
        except StoreUnavailableError as e:
            logger.error(f"Failed to store offline verification in legacy tier: {e}")
            return False

    def sync_offline_verification_attempts(self) -> int:
        """
        Replay stored attempts from the structured tier, then the legacy tier
        if the structured tier had nothing to process.

        Only one sync runs at a time. A call made while a sync is running
        returns 0 at once and the running sync makes one more pass.

        Returns:
            Number of attempts replayed (successful or not)
        """
        with self._sync_lock:
            if self._syncing:
                self._rerun_requested = True
                logger.debug("Verification sync already in progress, follow-up pass requested")
                return 0
            self._syncing = True

        processed = 0
        try:
            while True:
                processed += self._sync_once()
                with self._sync_lock:
                    if not self._rerun_requested:
                        self._syncing = False
                        break
                    self._rerun_requested = False
        except BaseException:
            with self._sync_lock:
                self._syncing = False
                self._rerun_requested = False
            raise

        if processed:
            logger.info(f"Processed {processed} offline verification attempts")
        return processed

    def _sync_once(self) -> int:
        processed = self._sync_structured()
        if processed == 0:
            processed = self._sync_legacy()
        return processed

    def _sync_structured(self) -> int:
        try:
            attempts = self._structured_attempts()
        except StoreUnavailableError as e:
            logger.error(f"Error synchronizing offline verifications: {e}")
            return 0

        processed = 0
        for attempt in attempts:
            if self._process(attempt, lambda a=attempt: self.store.delete(self.PARTITION, a.id)):
                processed += 1
        return processed

    def _sync_legacy(self) -> int:
        if self.flat_store is None:
            return 0

        processed = 0
        for key, attempt in self.legacy_attempts():
            if self._process(attempt, lambda k=key: self.flat_store.remove_item(k)):
                processed += 1
        return processed

    def _process(self, attempt: VerificationAttempt, discard: Callable[[], None]) -> bool:
        """Replay one attempt unless expired. Returns True if it was replayed."""
        try:
            if self.is_expired(attempt):
                logger.info(f"Discarding expired verification attempt {attempt.id}")
                discard()
                return False

            try:
                self.verifier(attempt.phone, attempt.code)
            except ReplayFailure as e:
                logger.warning(f"Offline verification {attempt.id} was not accepted: {e.message}")
            except Exception as e:
                logger.error(
                    f"Error replaying offline verification {attempt.id}: {e}",
                    exc_info=True,
                )

            discard()
            return True
        except StoreUnavailableError as e:
            logger.error(f"Failed to process offline verification {attempt.id}: {e}")
            return False

    def _structured_attempts(self) -> List[VerificationAttempt]:
        """Attempts held by the structured tier; malformed records are deleted."""
        attempts = []
        for record in self.store.get_all(self.PARTITION):
            try:
                attempts.append(VerificationAttempt.from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed offline verification {record.get('id')}: {e}")
                if record.get("id"):
                    self.store.delete(self.PARTITION, record["id"])
        return attempts

    def legacy_attempts(self) -> List[Tuple[str, VerificationAttempt]]:
        """Attempts held by the legacy flat tier, with their keys."""
        if self.flat_store is None:
            return []

        attempts = []
        for key in self.flat_store.item_keys(LEGACY_VERIFICATION_PREFIX):
            data = self.flat_store.get_item(key)
            if not data:
                continue
            try:
                attempts.append((key, VerificationAttempt.from_record(data)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed legacy verification {key}: {e}")
                self.flat_store.remove_item(key)
        return attempts

    def has_pending_offline_verifications(self) -> bool:
        """Check for any non-expired attempt in either tier."""
        try:
            structured = self._structured_attempts()
        except StoreUnavailableError as e:
            logger.error(f"Error checking for pending offline verifications: {e}")
            structured = []

        legacy = [attempt for _, attempt in self.legacy_attempts()]
        return any(not self.is_expired(a) for a in structured + legacy)
