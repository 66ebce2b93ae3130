"""SQLite database operations for SubTrackr."""

import functools
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .exceptions import StorageUnavailableError
from .models import ChangeLogEntry, SubscriptionRecord, SyncEnvelope

logger = logging.getLogger(__name__)


def _storage_errors(method):
    """Translate sqlite3 failures into StorageUnavailableError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except sqlite3.Error as e:
            logger.error(f"Database error in {method.__name__}: {e}")
            raise StorageUnavailableError(f"Local storage unavailable: {e}") from e

    return wrapper


class Database:
    """SQLite database manager.

    Each thread talks to the file through its own connection. Writes are
    serialized through one re-entrant lock and run inside explicit
    transactions, so a method either commits completely or not at all.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._write_lock = threading.RLock()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._init_schema()

    @property
    def conn(self) -> sqlite3.Connection:
        """The calling thread's connection, opened on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path), isolation_level=None, check_same_thread=False
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=FULL")
                conn.execute("PRAGMA busy_timeout=5000")
            except sqlite3.Error as e:
                raise StorageUnavailableError(
                    f"Cannot open database at {self.db_path}: {e}"
                ) from e
            self._local.conn = conn
            self._local.depth = 0
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one write transaction.

        Nested calls join the outermost transaction. Any exception rolls the
        whole transaction back.
        """
        with self._write_lock:
            conn = self.conn
            outermost = self._local.depth == 0
            began = False
            try:
                if outermost:
                    conn.execute("BEGIN IMMEDIATE")
                    began = True
                self._local.depth += 1
                try:
                    yield conn
                finally:
                    self._local.depth -= 1
                if outermost:
                    conn.execute("COMMIT")
            except BaseException as e:
                if began and conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    logger.error(f"Transaction rolled back: {e}")
                    raise StorageUnavailableError(
                        f"Local storage unavailable: {e}"
                    ) from e
                raise

    def _init_schema(self):
        """Initialize database schema."""
        with self.transaction() as conn:
            # Subscription records, including tombstones
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    anchor_date DATE NOT NULL,
                    data TEXT NOT NULL,
                    clock INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    tombstone_clock INTEGER,
                    tombstone_origin TEXT,
                    deleted_at TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )

            # Append-only log of local mutations awaiting push
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS change_log (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id TEXT NOT NULL,
                    clock INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    pushed INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_change_log_pending
                ON change_log (pushed, record_id)
            """
            )

            # Config table
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )

    def close(self):
        """Close every connection opened by this database."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # ========================================================================
    # Config operations
    # ========================================================================

    @_storage_errors
    def get_config(self, key: str) -> str | None:
        """Get a config value by key."""
        row = self.conn.execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        ).fetchone()
        return str(row["value"]) if row else None

    def set_config(self, key: str, value: str):
        """Set a config value."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now().isoformat()),
            )

    def get_sync_cursor(self) -> str | None:
        """Get the last remote cursor this device has merged up to."""
        return self.get_config("sync_cursor")

    def set_sync_cursor(self, cursor: str):
        """Persist the remote cursor."""
        self.set_config("sync_cursor", cursor)

    # ========================================================================
    # Record operations
    # ========================================================================

    @staticmethod
    def _row_to_envelope(row: sqlite3.Row) -> SyncEnvelope:
        record = SubscriptionRecord.model_validate_json(row["data"])
        if row["deleted"]:
            return SyncEnvelope.tombstone(
                record, row["tombstone_clock"], row["tombstone_origin"]
            )
        return SyncEnvelope.for_record(record)

    @_storage_errors
    def get_envelope(self, record_id: str) -> SyncEnvelope | None:
        """Get a record (live or tombstone) by id."""
        row = self.conn.execute(
            "SELECT data, deleted, tombstone_clock, tombstone_origin "
            "FROM records WHERE id = ?",
            (record_id,),
        ).fetchone()
        return self._row_to_envelope(row) if row else None

    @_storage_errors
    def list_envelopes(self, include_deleted: bool = False) -> list[SyncEnvelope]:
        """Get all records ordered by name."""
        query = (
            "SELECT data, deleted, tombstone_clock, tombstone_origin FROM records"
        )
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY name COLLATE NOCASE, id"
        return [self._row_to_envelope(row) for row in self.conn.execute(query)]

    def save_envelope(self, envelope: SyncEnvelope):
        """Insert or replace a record (live or tombstone)."""
        record = envelope.record
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO records (
                    id, name, status, anchor_date, data, clock, deleted,
                    tombstone_clock, tombstone_origin, deleted_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    status = excluded.status,
                    anchor_date = excluded.anchor_date,
                    data = excluded.data,
                    clock = excluded.clock,
                    deleted = excluded.deleted,
                    tombstone_clock = excluded.tombstone_clock,
                    tombstone_origin = excluded.tombstone_origin,
                    deleted_at = COALESCE(records.deleted_at, excluded.deleted_at),
                    updated_at = excluded.updated_at
                """,
                (
                    record.id,
                    record.name,
                    record.status.value,
                    record.anchor_date.isoformat(),
                    record.model_dump_json(),
                    envelope.logical_clock,
                    int(envelope.deleted),
                    envelope.logical_clock if envelope.deleted else None,
                    envelope.device_origin if envelope.deleted else None,
                    datetime.now().isoformat() if envelope.deleted else None,
                    datetime.now().isoformat(),
                ),
            )
            if not envelope.deleted:
                # A resurrected record drops its deletion timestamp
                conn.execute(
                    "UPDATE records SET deleted_at = NULL WHERE id = ?", (record.id,)
                )

    def save_envelopes(self, envelopes: list[SyncEnvelope]):
        """Write a batch of records in a single transaction."""
        with self.transaction():
            for envelope in envelopes:
                self.save_envelope(envelope)

    def purge_tombstones(self, older_than: datetime) -> int:
        """
        Physically delete tombstones deleted before `older_than`.

        Tombstones whose deletion has not been pushed yet are kept.

        Returns:
            Number of purged records
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM records
                WHERE deleted = 1
                  AND deleted_at < ?
                  AND id NOT IN (
                      SELECT record_id FROM change_log WHERE pushed = 0
                  )
                """,
                (older_than.isoformat(),),
            )
            return cursor.rowcount

    # ========================================================================
    # Change log operations
    # ========================================================================

    def append_change(self, record_id: str, clock: int, deleted: bool = False) -> int:
        """
        Append a change log entry and return its sequence number.

        An unpushed entry for the same record is replaced, since pushes send
        the record's current state anyway.
        """
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM change_log WHERE record_id = ? AND pushed = 0",
                (record_id,),
            )
            cursor = conn.execute(
                """
                INSERT INTO change_log (record_id, clock, deleted, pushed, created_at)
                VALUES (?, ?, ?, 0, ?)
                """,
                (record_id, clock, int(deleted), datetime.now().isoformat()),
            )
            seq = cursor.lastrowid
            if seq is None:
                raise RuntimeError("Failed to insert change log entry")
            return seq

    @staticmethod
    def _row_to_change(row: sqlite3.Row) -> ChangeLogEntry:
        return ChangeLogEntry(
            seq=row["seq"],
            record_id=row["record_id"],
            clock=row["clock"],
            deleted=bool(row["deleted"]),
            pushed=bool(row["pushed"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @_storage_errors
    def get_pending_changes(self) -> list[ChangeLogEntry]:
        """Get unpushed change log entries in sequence order."""
        rows = self.conn.execute(
            """
            SELECT seq, record_id, clock, deleted, pushed, created_at
            FROM change_log
            WHERE pushed = 0
            ORDER BY seq
            """
        )
        return [self._row_to_change(row) for row in rows]

    @_storage_errors
    def get_changes(self, limit: int = 50) -> list[ChangeLogEntry]:
        """Get the most recent change log entries, newest first."""
        rows = self.conn.execute(
            """
            SELECT seq, record_id, clock, deleted, pushed, created_at
            FROM change_log
            ORDER BY seq DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [self._row_to_change(row) for row in rows]

    def mark_changes_pushed(self, up_to_seq: int) -> int:
        """Mark every pending entry with seq <= up_to_seq as pushed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE change_log SET pushed = 1 WHERE pushed = 0 AND seq <= ?",
                (up_to_seq,),
            )
            return cursor.rowcount

    def prune_change_log(self, keep: int) -> int:
        """Delete pushed entries beyond the newest `keep` ones."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM change_log
                WHERE pushed = 1 AND seq NOT IN (
                    SELECT seq FROM change_log
                    WHERE pushed = 1
                    ORDER BY seq DESC
                    LIMIT ?
                )
                """,
                (keep,),
            )
            return cursor.rowcount
