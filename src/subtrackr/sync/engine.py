"""Sync engine reconciling the local store with a remote document store.

One run walks Idle -> Pulling -> Merging -> Pushing -> Idle. Any error moves
to Failed and back to Idle without advancing the cursor. Cancellation is only
honoured at checkpoints between those steps, never in the middle of writing
a merged batch.
"""

import logging
import threading
from datetime import datetime
from enum import StrEnum

from ..clients.remote import RemoteHandle
from ..exceptions import InvalidCycleError, SyncCancelledError
from ..models import MergeResult, SyncEnvelope
from ..scheduler import validate_cycle
from ..store import LocalStore
from .merge import resolve

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    """States of the sync state machine."""

    IDLE = "idle"
    PULLING = "pulling"
    MERGING = "merging"
    PUSHING = "pushing"
    FAILED = "failed"


class SyncEngine:
    """Runs sync passes between a LocalStore and a RemoteHandle."""

    def __init__(self, store: LocalStore, remote: RemoteHandle):
        """Initialize the engine in the Idle state."""
        self.store = store
        self.remote = remote
        self.state = SyncState.IDLE
        self.history: list[SyncState] = []
        self.last_error: Exception | None = None
        self.last_result: MergeResult | None = None
        self.last_synced_at: datetime | None = None
        self._cancel = threading.Event()
        self._run_lock = threading.Lock()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def cancel(self):
        """Ask the current (or next) run to stop at its next checkpoint."""
        self._cancel.set()

    def reset_cancel(self):
        """Clear a pending cancellation request."""
        self._cancel.clear()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def _transition(self, state: SyncState):
        logger.debug(f"Sync state {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    def _checkpoint(self, step: str):
        if self._cancel.is_set():
            self._cancel.clear()
            logger.info(f"Sync cancelled before {step}")
            raise SyncCancelledError(f"Sync cancelled before {step}")

    # ========================================================================
    # Sync
    # ========================================================================

    def sync(self) -> MergeResult:
        """
        Run one sync pass.

        Returns:
            Counts of pulled, applied and pushed envelopes plus the new cursor

        Raises:
            SyncUnavailableError: If the remote cannot be reached
            SyncCancelledError: If cancelled at a checkpoint
            StorageUnavailableError: If the local store fails
        """
        with self._run_lock:
            try:
                result = self._run()
            except SyncCancelledError:
                self._transition(SyncState.IDLE)
                raise
            except Exception as e:
                failed_step = self.state
                self.last_error = e
                self._transition(SyncState.FAILED)
                logger.warning(f"Sync failed while {failed_step}: {e}")
                self._transition(SyncState.IDLE)
                raise

            self.last_error = None
            self.last_result = result
            self.last_synced_at = datetime.now()
            self._transition(SyncState.IDLE)
            return result

    def _run(self) -> MergeResult:
        self._checkpoint("pull")
        self._transition(SyncState.PULLING)
        cursor = self.store.get_sync_cursor()
        pulled = self.remote.pull(cursor)
        logger.info(f"Pulled {len(pulled.envelopes)} envelope(s) since {cursor}")

        self._checkpoint("merge")
        self._transition(SyncState.MERGING)
        result = MergeResult(pulled=len(pulled.envelopes), cursor=cursor)
        self._validate(pulled.envelopes)

        # Last boundary before touching the local store
        self._checkpoint("merge commit")
        # Local reads and the merged write share one write transaction, so a
        # concurrent edit lands entirely before or after the merge
        with self.store.db.transaction():
            to_write, stale_ids = self._merge(pulled.envelopes, result)
            self.store.apply_merged(to_write)
        result.applied = len(to_write)

        self._checkpoint("push")
        self._transition(SyncState.PUSHING)
        new_cursor = self._push(stale_ids, pulled.cursor, result)

        if new_cursor is not None and new_cursor != cursor:
            self.store.set_sync_cursor(new_cursor)
        result.cursor = new_cursor if new_cursor is not None else cursor

        logger.info(
            f"Sync complete: pulled={result.pulled} applied={result.applied} "
            f"pushed={result.pushed} conflicts={result.conflicts}"
        )
        return result

    def _validate(self, envelopes: list[SyncEnvelope]):
        """Reject pulled records whose billing cycle cannot produce renewals."""
        for envelope in envelopes:
            try:
                validate_cycle(envelope.record.billing_cycle)
            except InvalidCycleError as e:
                raise InvalidCycleError(
                    f"Pulled record {envelope.id} has an invalid billing cycle: {e}"
                ) from e

    def _merge(
        self, envelopes: list[SyncEnvelope], result: MergeResult
    ) -> tuple[list[SyncEnvelope], list[str]]:
        """
        Merge pulled envelopes against the local copies.

        Returns:
            Tuple of (envelopes to write locally, ids the remote is stale on)
        """
        merged_by_id: dict[str, SyncEnvelope] = {}
        originals: dict[str, SyncEnvelope | None] = {}
        stale: dict[str, bool] = {}

        for remote in envelopes:
            record_id = remote.id
            if record_id not in originals:
                originals[record_id] = self.store.get_envelope(record_id)
            current = merged_by_id.get(record_id, originals[record_id])

            merged, _, remote_stale = resolve(current, remote)
            merged_by_id[record_id] = merged
            stale[record_id] = remote_stale

        to_write = []
        for record_id, merged in merged_by_id.items():
            original = originals[record_id]
            if original is not None and merged.model_dump() == original.model_dump():
                continue
            to_write.append(merged)

            if original is not None and stale[record_id]:
                result.conflicts += 1
                logger.info(f"Resolved concurrent edits on {record_id}")
            if merged.deleted and (original is None or not original.deleted):
                result.tombstones += 1

        stale_ids = [record_id for record_id, is_stale in stale.items() if is_stale]
        return to_write, stale_ids

    def _push(
        self, stale_ids: list[str], pull_cursor: str | None, result: MergeResult
    ) -> str | None:
        """
        Push pending local changes plus stale merged records.

        Returns:
            The cursor to persist
        """
        pending = self.store.pending_changes()
        push_ids = list(dict.fromkeys([c.record_id for c in pending] + stale_ids))

        envelopes = []
        for record_id in push_ids:
            envelope = self.store.get_envelope(record_id)
            if envelope is not None:
                envelopes.append(envelope)

        if not envelopes:
            return pull_cursor

        pushed = self.remote.push(envelopes)
        result.pushed = len(envelopes)
        if pending:
            self.store.acknowledge(max(c.seq for c in pending))

        # Skip our own writes on the next pull only if nobody else wrote
        # between our pull and push
        if pushed.cursor_after is not None and pushed.cursor_before == pull_cursor:
            return pushed.cursor_after
        return pull_cursor
