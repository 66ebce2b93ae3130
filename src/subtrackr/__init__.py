"""SubTrackr - Local-first subscription tracking with cross-device sync."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .models import (
    NotificationPreferences,
    Reminder,
    SubscriptionRecord,
    SubscriptionStatus,
    SyncEnvelope,
)
from .money import Money, StaticRateProvider
from .notifications import plan
from .scheduler import next_renewal
from .store import LocalStore
from .sync.engine import SyncEngine

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "NotificationPreferences",
    "Reminder",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "SyncEnvelope",
    "Money",
    "StaticRateProvider",
    "plan",
    "next_renewal",
    "LocalStore",
    "SyncEngine",
]
