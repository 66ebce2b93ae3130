"""Tests for deterministic envelope merging."""

from datetime import date, datetime
from functools import reduce
from itertools import permutations

import pytest

from subtrackr.models import (
    FIELD_GROUPS,
    MonthlyCycle,
    SubscriptionRecord,
    SubscriptionStatus,
    SyncEnvelope,
    Version,
)
from subtrackr.money import Money
from subtrackr.sync.merge import merge, merge_records, resolve


def make_record(versions=None, **overrides) -> SubscriptionRecord:
    """A record with every group at clock 1 from device-x unless overridden."""
    stamps = {group: Version(clock=1, origin="device-x") for group in FIELD_GROUPS}
    stamps.update(versions or {})
    fields = {
        "id": "rec-1",
        "name": "Netflix",
        "cost": Money.of("9.99", "USD"),
        "billing_cycle": MonthlyCycle(day_of_month=15),
        "anchor_date": date(2025, 1, 15),
        "versions": stamps,
        "created_at": datetime(2025, 1, 1, 12, 0),
        "updated_at": datetime(2025, 1, 1, 12, 0),
    }
    fields.update(overrides)
    return SubscriptionRecord(**fields)


def live(record: SubscriptionRecord) -> SyncEnvelope:
    return SyncEnvelope.for_record(record)


def dumped(envelope: SyncEnvelope) -> dict:
    return envelope.model_dump()


BASE = make_record()
RENAMED_ON_X = make_record(
    versions={"profile": Version(clock=2, origin="device-x")},
    name="Netflix HD",
    updated_at=datetime(2025, 2, 1),
)
REPRICED_ON_Y = make_record(
    versions={"billing": Version(clock=2, origin="device-y")},
    cost=Money.of("12.99", "USD"),
    updated_at=datetime(2025, 2, 2),
)
PAUSED_ON_Y = make_record(
    versions={"status": Version(clock=3, origin="device-y")},
    status=SubscriptionStatus.PAUSED,
    updated_at=datetime(2025, 2, 3),
)


class TestMergeLive:
    """Merging two live copies."""

    def test_disjoint_edits_both_survive(self):
        """Edits to different field groups are combined."""
        merged = merge(live(RENAMED_ON_X), live(REPRICED_ON_Y))

        assert not merged.deleted
        assert merged.record.name == "Netflix HD"
        assert merged.record.cost == Money.of("12.99", "USD")
        assert merged.logical_clock == 2
        assert merged.device_origin == "device-y"
        assert merged.record.updated_at == datetime(2025, 2, 2)
        assert merged.record.created_at == datetime(2025, 1, 1, 12, 0)

    def test_higher_clock_wins_group(self):
        """Within a group the higher clock wins."""
        merged = merge(live(BASE), live(REPRICED_ON_Y))

        assert merged.record.cost == Money.of("12.99", "USD")
        assert merged.record.versions["billing"] == Version(clock=2, origin="device-y")

    def test_tie_broken_by_origin(self):
        """Equal clocks fall back to the device origin."""
        on_a = make_record(
            versions={"billing": Version(clock=2, origin="device-a")},
            cost=Money.of("11", "USD"),
        )
        on_b = make_record(
            versions={"billing": Version(clock=2, origin="device-b")},
            cost=Money.of("12", "USD"),
        )

        assert merge(live(on_a), live(on_b)).record.cost == Money.of("12", "USD")
        assert merge(live(on_b), live(on_a)).record.cost == Money.of("12", "USD")

    def test_merge_records_requires_same_id(self):
        """Different records cannot be merged."""
        with pytest.raises(ValueError):
            merge_records(BASE, make_record(id="rec-2"))


class TestMergeTombstones:
    """Deletion precedence."""

    def test_tombstone_wins_at_equal_clock(self):
        """A deletion beats a live edit with the same clock."""
        tombstone = SyncEnvelope.tombstone(BASE, clock=2, origin="device-x")

        merged = merge(tombstone, live(REPRICED_ON_Y))

        assert merged.deleted
        assert merged.logical_clock == 2
        assert merged.device_origin == "device-x"
        assert merged.record.cost == Money.of("9.99", "USD")
        assert merged.record.deleted_clock == 2

    def test_newer_edit_beats_tombstone(self):
        """A live record with a higher clock survives the deletion."""
        tombstone = SyncEnvelope.tombstone(BASE, clock=2, origin="device-x")

        merged = merge(tombstone, live(PAUSED_ON_Y))

        assert not merged.deleted
        assert merged.record.status == SubscriptionStatus.PAUSED

    def test_higher_tombstone_wins(self):
        """Between tombstones the higher (clock, origin) wins."""
        older = SyncEnvelope.tombstone(BASE, clock=2, origin="device-z")
        newer = SyncEnvelope.tombstone(BASE, clock=3, origin="device-a")

        merged = merge(older, newer)

        assert merged.deleted
        assert (merged.logical_clock, merged.device_origin) == (3, "device-a")


class TestTombstoneFloor:
    """Edits older than an observed deletion stay discarded."""

    def arrivals(self):
        deleted_on_x = SyncEnvelope.tombstone(
            make_record(
                versions={"profile": Version(clock=2, origin="device-x")},
                name="Netflix HD",
            ),
            clock=3,
            origin="device-x",
        )
        repriced_on_y = live(
            make_record(
                versions={"billing": Version(clock=4, origin="device-y")},
                cost=Money.of("14.99", "USD"),
            )
        )
        renamed_on_z = live(
            make_record(
                versions={"profile": Version(clock=2, origin="device-z")},
                name="Stale name from Z",
            )
        )
        return [deleted_on_x, repriced_on_y, renamed_on_z]

    def test_stale_rename_dropped_after_resurrection(self):
        """A later edit revives the record without the pre-deletion rename."""
        deleted_on_x, repriced_on_y, renamed_on_z = self.arrivals()

        merged = merge(merge(deleted_on_x, repriced_on_y), renamed_on_z)

        assert not merged.deleted
        assert merged.record.name == "Netflix HD"
        assert merged.record.cost == Money.of("14.99", "USD")
        assert merged.record.deleted_clock == 3
        assert merged.logical_clock == 4

    def test_every_arrival_order_converges(self):
        """The outcome does not depend on the order envelopes arrive in."""
        results = [
            dumped(reduce(merge, order)) for order in permutations(self.arrivals())
        ]

        assert all(result == results[0] for result in results)
        assert results[0]["record"]["name"] == "Netflix HD"

    def test_stale_edit_against_tombstone_keeps_deletion_snapshot(self):
        """A live copy at or below the deletion clock contributes nothing."""
        deleted_on_x, _, renamed_on_z = self.arrivals()

        merged = merge(renamed_on_z, deleted_on_x)

        assert merged.deleted
        assert merged.record.name == "Netflix HD"

    def test_tombstone_records_its_clock(self):
        """Wrapping a record as a tombstone raises its deletion floor."""
        tombstone = SyncEnvelope.tombstone(BASE, clock=5, origin="device-x")

        assert tombstone.record.deleted_clock == 5
        assert BASE.deleted_clock == 0


PAIRS = [
    (live(BASE), live(BASE)),
    (live(RENAMED_ON_X), live(REPRICED_ON_Y)),
    (live(RENAMED_ON_X), live(PAUSED_ON_Y)),
    (live(BASE), live(PAUSED_ON_Y)),
    (SyncEnvelope.tombstone(BASE, 2, "device-x"), live(REPRICED_ON_Y)),
    (SyncEnvelope.tombstone(RENAMED_ON_X, 2, "device-x"), live(PAUSED_ON_Y)),
    (
        SyncEnvelope.tombstone(BASE, 2, "device-x"),
        SyncEnvelope.tombstone(REPRICED_ON_Y, 2, "device-y"),
    ),
]


class TestMergeProperties:
    """Algebraic properties every device relies on to converge."""

    @pytest.mark.parametrize("a,b", PAIRS)
    def test_commutative(self, a, b):
        """merge(a, b) == merge(b, a)."""
        assert dumped(merge(a, b)) == dumped(merge(b, a))

    @pytest.mark.parametrize("a,b", PAIRS)
    def test_idempotent(self, a, b):
        """Merging the result again with either input changes nothing."""
        merged = merge(a, b)

        assert dumped(merge(merged, a)) == dumped(merged)
        assert dumped(merge(merged, b)) == dumped(merged)

    def test_associative(self):
        """Three-way merges do not depend on grouping."""
        a, b, c = live(RENAMED_ON_X), live(REPRICED_ON_Y), live(PAUSED_ON_Y)

        assert dumped(merge(merge(a, b), c)) == dumped(merge(a, merge(b, c)))


class TestResolve:
    """Merging a pulled envelope into local state."""

    def test_unknown_locally(self):
        """A new remote record is written locally as-is."""
        remote = live(BASE)

        merged, local_changed, remote_stale = resolve(None, remote)

        assert merged is remote
        assert local_changed
        assert not remote_stale

    def test_identical(self):
        """Nothing to do when both sides agree."""
        _, local_changed, remote_stale = resolve(live(BASE), live(BASE))

        assert not local_changed
        assert not remote_stale

    def test_remote_newer(self):
        """A strictly newer remote copy only changes the local side."""
        _, local_changed, remote_stale = resolve(live(BASE), live(REPRICED_ON_Y))

        assert local_changed
        assert not remote_stale

    def test_concurrent(self):
        """Concurrent edits change both sides."""
        _, local_changed, remote_stale = resolve(
            live(RENAMED_ON_X), live(REPRICED_ON_Y)
        )

        assert local_changed
        assert remote_stale
