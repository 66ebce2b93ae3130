"""Local store of subscription records.

The store is authoritative while offline. Every user mutation bumps the
record's logical clock, stamps the touched field groups with this device's id
and appends to the change log that the sync engine pushes from.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any
from uuid import uuid4

from .config import Settings
from .db import Database
from .exceptions import NotFoundError
from .models import (
    FIELD_GROUPS,
    BillingCycle,
    ChangeLogEntry,
    DueRenewal,
    SubscriptionRecord,
    SubscriptionStatus,
    SyncEnvelope,
    Version,
)
from .money import Money
from .scheduler import next_renewal, validate_cycle

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"


def changed_groups(record: SubscriptionRecord, changes: dict[str, Any]) -> set[str]:
    """Return the field groups whose values differ from `changes`."""
    groups = set()
    for group, fields in FIELD_GROUPS.items():
        for field in fields:
            if field in changes and getattr(record, field) != changes[field]:
                groups.add(group)
    return groups


class LocalStore:
    """CRUD over subscription records plus the sync bookkeeping."""

    def __init__(
        self,
        database: Database,
        device_id: str | None = None,
        change_log_limit: int = 1000,
    ):
        """Initialize the store, generating a device id on first use."""
        self.db = database
        self.change_log_limit = change_log_limit
        self.device_id = device_id or self._load_device_id()

    def _load_device_id(self) -> str:
        device_id = self.db.get_config(DEVICE_ID_KEY)
        if device_id is None:
            device_id = uuid4().hex
            self.db.set_config(DEVICE_ID_KEY, device_id)
            logger.info(f"Generated device id {device_id}")
        return device_id

    # ========================================================================
    # Queries
    # ========================================================================

    def get(self, record_id: str) -> SubscriptionRecord:
        """
        Get a live record by id.

        Raises:
            NotFoundError: If the id is unknown or was deleted
        """
        envelope = self.db.get_envelope(record_id)
        if envelope is None or envelope.deleted:
            raise NotFoundError(record_id)
        return envelope.record

    def list_records(
        self, status: SubscriptionStatus | None = None
    ) -> list[SubscriptionRecord]:
        """List live records, optionally filtered by status."""
        records = [env.record for env in self.db.list_envelopes()]
        if status is not None:
            records = [r for r in records if r.status == status]
        return records

    def find(self, id_or_prefix: str) -> SubscriptionRecord:
        """
        Resolve a full id or an unambiguous id prefix.

        Raises:
            NotFoundError: If nothing or more than one record matches
        """
        envelope = self.db.get_envelope(id_or_prefix)
        if envelope is not None and not envelope.deleted:
            return envelope.record

        matches = [r for r in self.list_records() if r.id.startswith(id_or_prefix)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise NotFoundError(
                id_or_prefix, f"Id prefix {id_or_prefix} matches {len(matches)} records"
            )
        raise NotFoundError(id_or_prefix)

    def list_due_before(
        self, before: date, as_of: date | None = None
    ) -> list[DueRenewal]:
        """
        List active records renewing on or after `as_of` and before `before`.

        Args:
            before: Exclusive upper bound for the renewal date
            as_of: First day to consider (defaults to today)

        Returns:
            Due renewals ordered by date, then name
        """
        as_of = as_of or date.today()
        due = []
        for record in self.list_records(status=SubscriptionStatus.ACTIVE):
            renewal = next_renewal(
                record.billing_cycle, record.anchor_date, as_of - timedelta(days=1)
            )
            if renewal < before:
                due.append(DueRenewal(record=record, renewal_date=renewal))
        due.sort(key=lambda d: (d.renewal_date, d.record.name.lower()))
        return due

    def get_envelope(self, record_id: str) -> SyncEnvelope | None:
        """Get the sync view of a record, tombstones included."""
        return self.db.get_envelope(record_id)

    # ========================================================================
    # User mutations
    # ========================================================================

    def _stamp(self, record: SubscriptionRecord, groups: set[str]) -> SubscriptionRecord:
        clock = record.clock + 1
        versions = dict(record.versions)
        for group in groups:
            versions[group] = Version(clock=clock, origin=self.device_id)
        return record.model_copy(
            update={"versions": versions, "updated_at": datetime.now()}
        )

    def _commit(self, envelope: SyncEnvelope) -> int:
        with self.db.transaction():
            self.db.save_envelope(envelope)
            seq = self.db.append_change(
                envelope.id, envelope.logical_clock, envelope.deleted
            )
        return seq

    def create(
        self,
        name: str,
        cost: Money,
        billing_cycle: BillingCycle,
        anchor_date: date,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        notes: str | None = None,
    ) -> SubscriptionRecord:
        """
        Create a new subscription record.

        Raises:
            InvalidCycleError: If the billing cycle is invalid
        """
        validate_cycle(billing_cycle)
        record = SubscriptionRecord(
            name=name,
            notes=notes,
            cost=cost,
            billing_cycle=billing_cycle,
            anchor_date=anchor_date,
            status=status,
        )
        record = self._stamp(record, set(FIELD_GROUPS))
        seq = self._commit(SyncEnvelope.for_record(record))

        logger.info(f"Created subscription {record.id} '{record.name}' (seq {seq})")
        return record

    def update(self, record_id: str, **changes: Any) -> SubscriptionRecord:
        """
        Update fields of a record.

        Only the field groups whose values actually change get a new version.

        Raises:
            NotFoundError: If the id is unknown or was deleted
            InvalidCycleError: If a new billing cycle is invalid
            ValueError: If a field name is not editable
        """
        editable = {field for fields in FIELD_GROUPS.values() for field in fields}
        unknown = set(changes) - editable
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        with self.db.transaction():
            record = self.get(record_id)
            groups = changed_groups(record, changes)
            if not groups:
                logger.debug(f"No changes for subscription {record_id}")
                return record

            if "billing_cycle" in changes:
                validate_cycle(changes["billing_cycle"])

            # Validate through the model so invariants hold on the new values
            updated = SubscriptionRecord.model_validate(
                {**record.model_dump(), **changes}
            )
            updated = self._stamp(updated, groups)
            seq = self._commit(SyncEnvelope.for_record(updated))

        logger.info(
            f"Updated subscription {record_id} groups={sorted(groups)} "
            f"clock={updated.clock} (seq {seq})"
        )
        return updated

    def set_status(
        self, record_id: str, status: SubscriptionStatus
    ) -> SubscriptionRecord:
        """Pause, resume or cancel a subscription."""
        return self.update(record_id, status=status)

    def delete(self, record_id: str) -> SyncEnvelope:
        """
        Delete a record by turning it into a tombstone.

        Raises:
            NotFoundError: If the id is unknown or already deleted
        """
        with self.db.transaction():
            record = self.get(record_id)
            tombstone = SyncEnvelope.tombstone(
                record, clock=record.clock + 1, origin=self.device_id
            )
            seq = self._commit(tombstone)

        logger.info(
            f"Deleted subscription {record_id} at clock {tombstone.logical_clock} "
            f"(seq {seq})"
        )
        return tombstone

    # ========================================================================
    # Sync support
    # ========================================================================

    def apply_tombstone(self, record_id: str, clock: int, origin: str) -> bool:
        """
        Apply a deletion observed elsewhere.

        The tombstone wins over a live record whose clock is <= `clock`, and
        over an older tombstone. Nothing is appended to the change log.

        Returns:
            True if the local copy is now this tombstone

        Raises:
            NotFoundError: If the id has never been seen on this device
        """
        with self.db.transaction():
            current = self.db.get_envelope(record_id)
            if current is None:
                raise NotFoundError(record_id)

            if current.deleted:
                if current.sort_key() >= (clock, origin):
                    return False
            elif current.logical_clock > clock:
                logger.info(
                    f"Ignoring tombstone for {record_id} at clock {clock}: "
                    f"local clock {current.logical_clock} is newer"
                )
                return False

            self.db.save_envelope(
                SyncEnvelope.tombstone(current.record, clock=clock, origin=origin)
            )

        logger.info(f"Applied tombstone for {record_id} at clock {clock}")
        return True

    def apply_merged(self, envelopes: list[SyncEnvelope]):
        """Write merged envelopes in one transaction, all or nothing."""
        if envelopes:
            self.db.save_envelopes(envelopes)

    def pending_changes(self) -> list[ChangeLogEntry]:
        """Unpushed change log entries in sequence order."""
        return self.db.get_pending_changes()

    def acknowledge(self, up_to_seq: int) -> int:
        """Mark changes up to `up_to_seq` as pushed and trim the log."""
        with self.db.transaction():
            acked = self.db.mark_changes_pushed(up_to_seq)
            pruned = self.db.prune_change_log(self.change_log_limit)
        if pruned:
            logger.debug(f"Pruned {pruned} pushed change log entries")
        return acked

    def get_sync_cursor(self) -> str | None:
        return self.db.get_sync_cursor()

    def set_sync_cursor(self, cursor: str):
        self.db.set_sync_cursor(cursor)

    def purge_tombstones(self, retention: timedelta, now: datetime | None = None) -> int:
        """Physically remove pushed tombstones older than `retention`."""
        now = now or datetime.now()
        purged = self.db.purge_tombstones(now - retention)
        if purged:
            logger.info(f"Purged {purged} tombstone(s) older than {retention.days} days")
        return purged


def open_store(settings: Settings) -> LocalStore:
    """Open the configured database and wrap it in a LocalStore."""
    database = Database(settings.database_path)
    return LocalStore(
        database,
        device_id=settings.device_id,
        change_log_limit=settings.change_log_limit,
    )
