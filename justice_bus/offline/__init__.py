# =============================================================================
# justice_bus/offline/__init__.py
# Offline Support for the Tennessee Justice Bus portal
# =============================================================================
"""
Offline Support Module

Lets the portal keep accepting forms, notification triggers and phone
verification codes while the device has no connectivity, and replays them
once it comes back.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE SUPPORT ARCHITECTURE                  │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                     OfflineSystem                         │  │
│   │        (Bootstrapper - migrations, drain triggers)        │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│     ┌──────────┬───────────┼────────────┬──────────────┐        │
│     ▼          ▼           ▼            ▼              ▼        │
│  ┌───────┐ ┌────────┐ ┌──────────┐ ┌─────────┐ ┌─────────────┐  │
│  │ Forms │ │ Notif. │ │ Verific. │ │ Events  │ │ Connectivity│  │
│  └───────┘ └────────┘ └──────────┘ └─────────┘ │   Watcher   │  │
│      │         │           │            │      └─────────────┘  │
│      └────┬────┘           │            │             │         │
│           ▼                │            │             ▼         │
│   ┌──────────────┐         │            │     ┌──────────────┐  │
│   │  SyncQueue   │◄────────┼────────────┼─────│ SyncDrainer  │  │
│   └──────────────┘         │            │     └──────────────┘  │
│           │                ▼            ▼             │         │
│   ┌──────────────────────────────────────────┐        ▼         │
│   │ LocalStore (SQLite │ flat JSON fallback) │    ApiClient     │
│   └──────────────────────────────────────────┘   (requests)     │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from justice_bus.config import load_config
from justice_bus.offline import create_offline_system

system = create_offline_system(load_config())
system.initialize()

system.forms.submit_with_offline_support("/api/forms", {"name": "Test"})
system.watcher.notify_online()      # queued items are replayed
print(system.get_status_display())
"""

from justice_bus.offline.local_store import (
    LocalStore,
    StructuredStore,
    FlatStore,
    Partitions,
    PartitionConfig,
    probe_local_store,
    can_function_offline,
)

from justice_bus.offline.models import (
    SyncQueueItem,
    VerificationAttempt,
    EventsSnapshot,
)

from justice_bus.offline.http_client import ApiClient

from justice_bus.offline.sync_queue import (
    SyncQueue,
    SyncDrainer,
    RetryPolicy,
    DrainResult,
)

from justice_bus.offline.connection_manager import (
    ConnectivityWatcher,
    ConnectionStatus,
    ConnectionState,
    tcp_probe,
)

from justice_bus.offline.forms_offline import FormsOffline, OFFLINE_FORM_MESSAGE
from justice_bus.offline.notifications_offline import NotificationsOffline
from justice_bus.offline.verification_offline import (
    VerificationOffline,
    CredentialsVerifier,
)
from justice_bus.offline.events_offline import EventsOffline, validate_events_snapshot
from justice_bus.offline.migrations import LegacyMigrator

from justice_bus.offline.offline_system import (
    OfflineSystem,
    create_offline_system,
)

__all__ = [
    # Local Store
    "LocalStore",
    "StructuredStore",
    "FlatStore",
    "Partitions",
    "PartitionConfig",
    "probe_local_store",
    "can_function_offline",
    # Records
    "SyncQueueItem",
    "VerificationAttempt",
    "EventsSnapshot",
    # Sync
    "ApiClient",
    "SyncQueue",
    "SyncDrainer",
    "RetryPolicy",
    "DrainResult",
    # Connectivity
    "ConnectivityWatcher",
    "ConnectionStatus",
    "ConnectionState",
    "tcp_probe",
    # Feature Adapters
    "FormsOffline",
    "OFFLINE_FORM_MESSAGE",
    "NotificationsOffline",
    "VerificationOffline",
    "CredentialsVerifier",
    "EventsOffline",
    "validate_events_snapshot",
    "LegacyMigrator",
    # Bootstrapper (Main API)
    "OfflineSystem",
    "create_offline_system",
]
