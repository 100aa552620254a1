# =============================================================================
# justice_bus/offline/models.py
# Records persisted by the offline core
# =============================================================================
"""
Dataclasses for the records the offline core persists.

Records are stored with the camelCase field names the web client used, so
data written by either side stays readable.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass
class SyncQueueItem:
    """A request waiting to be replayed against the server."""
    store_type: str
    data: Any
    api_path: str
    method: str = "POST"
    timestamp: str = field(default_factory=utc_now_iso)
    synced: bool = False
    id: Optional[int] = None
    attempts: int = 0
    last_attempt: Optional[str] = None
    last_error: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = {
            "storeType": self.store_type,
            "data": self.data,
            "timestamp": self.timestamp,
            "synced": self.synced,
            "apiPath": self.api_path,
            "method": self.method,
            "attempts": self.attempts,
            "lastAttempt": self.last_attempt,
            "lastError": self.last_error,
        }
        if self.id is not None:
            record["id"] = self.id
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> SyncQueueItem:
        return cls(
            id=record.get("id"),
            store_type=record.get("storeType", "unknown"),
            data=record.get("data"),
            api_path=record.get("apiPath", ""),
            method=record.get("method") or "POST",
            timestamp=record.get("timestamp") or utc_now_iso(),
            synced=bool(record.get("synced", False)),
            attempts=int(record.get("attempts") or 0),
            last_attempt=record.get("lastAttempt"),
            last_error=record.get("lastError"),
        )


@dataclass
class VerificationAttempt:
    """A phone verification code entered while offline."""
    phone: str
    code: str
    timestamp: int = field(default_factory=epoch_ms)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.phone}_{self.timestamp}"

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phone": self.phone,
            "code": self.code,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> VerificationAttempt:
        return cls(
            id=record.get("id") or "",
            phone=str(record["phone"]),
            code=str(record["code"]),
            timestamp=int(record["timestamp"]),
        )


DEFAULT_CONTACT_INFO: Dict[str, Any] = {
    "email": "justicebus@tncourts.gov",
    "website": "https://justiceforalltn.org/upcoming-events/",
}


@dataclass
class EventsSnapshot:
    """Cached copy of the whole events dataset."""
    events: List[Dict[str, Any]]
    last_updated: str
    contact_info: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_CONTACT_INFO))

    def to_record(self) -> Dict[str, Any]:
        return {
            "events": self.events,
            "lastUpdated": self.last_updated,
            "contactInfo": self.contact_info,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> EventsSnapshot:
        return cls(
            events=list(record.get("events") or []),
            last_updated=record.get("lastUpdated", ""),
            contact_info=dict(record.get("contactInfo") or DEFAULT_CONTACT_INFO),
        )

    def find_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        for event in self.events:
            if event.get("id") == event_id:
                return event
        return None
