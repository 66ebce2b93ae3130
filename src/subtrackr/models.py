"""Pydantic domain models for SubTrackr."""

from datetime import date, datetime, time
from enum import StrEnum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .money import Money

# ============================================================================
# Billing Cycles
# ============================================================================


class DailyCycle(BaseModel):
    """Renews every day."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["daily"] = "daily"


class WeeklyCycle(BaseModel):
    """Renews every seven days."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["weekly"] = "weekly"


class MonthlyCycle(BaseModel):
    """Renews on a fixed day of every month (clamped to short months)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["monthly"] = "monthly"
    day_of_month: int


class YearlyCycle(BaseModel):
    """Renews on a fixed month and day every year."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["yearly"] = "yearly"
    month: int
    day: int


class CustomCycle(BaseModel):
    """Renews every `interval_days` days."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["custom"] = "custom"
    interval_days: int


BillingCycle = Annotated[
    DailyCycle | WeeklyCycle | MonthlyCycle | YearlyCycle | CustomCycle,
    Field(discriminator="kind"),
]


# ============================================================================
# Subscription Models
# ============================================================================


class SubscriptionStatus(StrEnum):
    """Lifecycle status of a subscription."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


FieldGroup = Literal["profile", "billing", "status"]

# Fields merged together under one logical clock
FIELD_GROUPS: dict[str, tuple[str, ...]] = {
    "profile": ("name", "notes"),
    "billing": ("cost", "billing_cycle", "anchor_date"),
    "status": ("status",),
}


class Version(BaseModel):
    """Logical clock stamp for one field group."""

    model_config = ConfigDict(frozen=True)

    clock: int = Field(ge=0)
    origin: str

    def sort_key(self) -> tuple[int, str]:
        """Total order used for last-writer-wins: clock, then device origin."""
        return (self.clock, self.origin)


class SubscriptionRecord(BaseModel):
    """A tracked subscription.

    Each field group carries its own Version so that concurrent edits to
    different groups on different devices both survive a merge. The record's
    logical clock is the highest group clock.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    notes: str | None = None
    cost: Money
    billing_cycle: BillingCycle
    anchor_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    versions: dict[FieldGroup, Version] = Field(default_factory=dict)
    # Highest tombstone clock observed for this id; edits at or below it are stale
    deleted_clock: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Subscription name must not be empty")
        return value

    @field_validator("cost")
    @classmethod
    def _cost_not_negative(cls, value: Money) -> Money:
        if value.amount < 0:
            raise ValueError("Subscription cost must not be negative")
        return value

    @property
    def clock(self) -> int:
        """The record's logical clock (highest field-group clock)."""
        return max((v.clock for v in self.versions.values()), default=0)

    @property
    def latest_version(self) -> Version | None:
        """The field-group version with the highest (clock, origin)."""
        if not self.versions:
            return None
        return max(self.versions.values(), key=Version.sort_key)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


# ============================================================================
# Sync Models
# ============================================================================


class SyncEnvelope(BaseModel):
    """A record plus the metadata exchanged with the remote store."""

    record: SubscriptionRecord
    device_origin: str
    logical_clock: int = Field(ge=0)
    deleted: bool = False  # tombstone

    @property
    def id(self) -> str:
        return self.record.id

    def sort_key(self) -> tuple[int, str]:
        return (self.logical_clock, self.device_origin)

    @classmethod
    def for_record(cls, record: SubscriptionRecord) -> "SyncEnvelope":
        """Wrap a live record; origin is the writer of its latest group."""
        latest = record.latest_version
        return cls(
            record=record,
            device_origin=latest.origin if latest else "",
            logical_clock=record.clock,
        )

    @classmethod
    def tombstone(
        cls, record: SubscriptionRecord, clock: int, origin: str
    ) -> "SyncEnvelope":
        """Wrap a deleted record, raising its deletion floor to `clock`."""
        if record.deleted_clock < clock:
            record = record.model_copy(update={"deleted_clock": clock})
        return cls(record=record, device_origin=origin, logical_clock=clock, deleted=True)


class ChangeLogEntry(BaseModel):
    """A local mutation waiting to be (or already) pushed."""

    seq: int
    record_id: str
    clock: int
    deleted: bool = False
    pushed: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class PullResult(BaseModel):
    """Envelopes changed on the remote since a cursor."""

    envelopes: list[SyncEnvelope] = Field(default_factory=list)
    cursor: str | None = None


class PushResult(BaseModel):
    """Outcome of writing envelopes to the remote.

    `cursor_before` is the remote position right before the write, so the
    caller can tell whether anyone else wrote since its last pull.
    """

    cursor_before: str | None = None
    cursor_after: str | None = None


class MergeResult(BaseModel):
    """Summary of one sync run."""

    pulled: int = 0
    applied: int = 0  # local writes from merged remote envelopes
    pushed: int = 0
    conflicts: int = 0  # ids changed on both sides since the last sync
    tombstones: int = 0  # remote deletions applied locally
    cursor: str | None = None


# ============================================================================
# Planning Models
# ============================================================================


class DueRenewal(BaseModel):
    """An upcoming renewal of an active subscription."""

    record: SubscriptionRecord
    renewal_date: date


class NotificationPreferences(BaseModel):
    """How far ahead and at what time of day reminders fire."""

    lead_days: list[int] = Field(default_factory=lambda: [3, 1])
    reminder_time: time = time(9, 0)
    muted_record_ids: set[str] = Field(default_factory=set)

    @field_validator("lead_days")
    @classmethod
    def _non_negative_leads(cls, value: list[int]) -> list[int]:
        if any(days < 0 for days in value):
            raise ValueError("Reminder lead days must not be negative")
        return value


class Reminder(BaseModel):
    """A planned reminder instant for one renewal."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    fire_at: datetime
    renewal_date: date
    lead_days: int


class SpendingSummary(BaseModel):
    """Recurring cost of active subscriptions in a base currency."""

    base_currency: str
    monthly_total: Money
    yearly_total: Money
    by_currency: dict[str, Money] = Field(default_factory=dict)
    active_count: int = 0
