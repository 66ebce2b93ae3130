"""Deterministic merge of local and remote subscription envelopes.

Resolution never looks at wall-clock time. Each field group is won by the
higher (clock, origin) version, and deletions win against any live record
whose clock is not newer than the tombstone. Every record carries the highest
tombstone clock seen for its id, and a group edit at or below that floor only
counts if it comes from a copy that had already seen the deletion. The result
of merge(a, b) is the same as merge(b, a), so every device converges on the
same state.
"""

import logging

from ..models import FIELD_GROUPS, FieldGroup, SubscriptionRecord, SyncEnvelope

logger = logging.getLogger(__name__)


def _settled(envelope: SyncEnvelope) -> SyncEnvelope:
    """Make sure a tombstone's record carries its own deletion clock."""
    if envelope.deleted and envelope.record.deleted_clock < envelope.logical_clock:
        return SyncEnvelope.tombstone(
            envelope.record, envelope.logical_clock, envelope.device_origin
        )
    return envelope


def _source(
    group: FieldGroup, a: SubscriptionRecord, b: SubscriptionRecord, floor: int
) -> SubscriptionRecord:
    """Pick the copy whose version of `group` survives the merge."""
    best = None
    for copy in (a, b):
        version = copy.versions.get(group)
        if version is None:
            continue
        if version.clock <= floor and copy.deleted_clock < floor:
            # Written before a deletion this copy never saw
            continue
        if best is None or version.sort_key() > best.versions[group].sort_key():
            best = copy
    if best is None:
        best = a if a.deleted_clock >= b.deleted_clock else b
    return best


def merge_records(a: SubscriptionRecord, b: SubscriptionRecord) -> SubscriptionRecord:
    """
    Merge two copies of one record field group by field group.

    Args:
        a: One copy of the record
        b: Another copy of the same record

    Returns:
        A record whose every group comes from the newer copy of that group,
        ignoring edits that predate a deletion one of the copies observed
    """
    if a.id != b.id:
        raise ValueError(f"Cannot merge different records {a.id} and {b.id}")

    floor = max(a.deleted_clock, b.deleted_clock)
    fields = {}
    versions = {}
    for group, group_fields in FIELD_GROUPS.items():
        source = _source(group, a, b, floor)
        for field in group_fields:
            fields[field] = getattr(source, field)
        if source.versions.get(group) is not None:
            versions[group] = source.versions[group]

    return a.model_copy(
        update={
            **fields,
            "versions": versions,
            "deleted_clock": floor,
            "created_at": min(a.created_at, b.created_at),
            "updated_at": max(a.updated_at, b.updated_at),
        }
    )


def merge(a: SyncEnvelope, b: SyncEnvelope) -> SyncEnvelope:
    """
    Merge two envelopes for the same id.

    Rules:
    1. Both live: field groups merge by (clock, origin)
    2. One tombstone at clock C: it wins if the live side's clock is <= C
    3. Both tombstones: the higher (clock, origin) wins

    Record data merges by field group. Edits at or below the highest known
    tombstone clock are dropped unless they were made after seeing it, so a
    record resurrected by a later edit never picks up stale values.
    """
    a, b = _settled(a), _settled(b)
    record = merge_records(a.record, b.record)

    if a.deleted and b.deleted:
        winner = a if a.sort_key() >= b.sort_key() else b
        return SyncEnvelope.tombstone(
            record, clock=winner.logical_clock, origin=winner.device_origin
        )

    if a.deleted or b.deleted:
        tombstone, live = (a, b) if a.deleted else (b, a)
        if live.logical_clock <= tombstone.logical_clock:
            return SyncEnvelope.tombstone(
                record,
                clock=tombstone.logical_clock,
                origin=tombstone.device_origin,
            )
        logger.debug(
            f"Record {live.id} edited at clock {live.logical_clock} after "
            f"deletion at clock {tombstone.logical_clock}; keeping it"
        )

    return SyncEnvelope.for_record(record)


def resolve(
    local: SyncEnvelope | None, remote: SyncEnvelope
) -> tuple[SyncEnvelope, bool, bool]:
    """
    Merge a pulled envelope into the local copy.

    Returns:
        Tuple of (merged, local_changed, remote_stale). `local_changed` means
        the merged envelope must be written locally; `remote_stale` means the
        remote does not hold the merged state and it must be pushed.
    """
    if local is None:
        return _settled(remote), True, False

    merged = merge(local, remote)
    local_changed = merged.model_dump() != local.model_dump()
    remote_stale = merged.model_dump() != remote.model_dump()
    return merged, local_changed, remote_stale
