"""
Database module for the BambooHold service.

Provides SQLite-based storage for grants, record histories, submission
counters, ciphertexts, nonces and the event log. Uses thread-local
connections and proper indexing for performance.

Transactions nest: the outermost level is BEGIN IMMEDIATE ... COMMIT, inner
levels are savepoints, so an inner failure rolls back only its own writes.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from bamboohold import (
    CiphertextStore,
    ClassificationRecord,
    EncryptedType,
    LedgerStore,
    NonceStore,
    RegistryEvent,
)

from .config import DB_PATH as _DB_PATH_SETTING

DB_PATH = Path(_DB_PATH_SETTING)

# One connection per thread, reused across requests
_local = threading.local()

# One writer at a time across threads
_write_lock = threading.RLock()

_TABLES = ['grants', 'records', 'counters', 'ciphertexts', 'nonces', 'events']
_PRAGMAS = ("journal_mode=WAL", "synchronous=NORMAL", "foreign_keys=ON", "temp_store=MEMORY")


def _get_connection() -> sqlite3.Connection:
    """Connection of the calling thread, opened in WAL mode on first use."""
    if getattr(_local, 'conn', None) is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(DB_PATH), check_same_thread=False, isolation_level=None)
        for pragma in _PRAGMAS:
            conn.execute(f"PRAGMA {pragma}")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
        _local.depth = 0
    return _local.conn


@contextmanager
def _transaction():
    """Write transaction; the outer level is BEGIN IMMEDIATE, inner levels are savepoints."""
    conn = _get_connection()
    with _write_lock:
        depth = _local.depth
        savepoint = f"sp_{depth}"
        conn.execute("BEGIN IMMEDIATE" if depth == 0 else f"SAVEPOINT {savepoint}")
        _local.depth = depth + 1
        try:
            yield conn
        except Exception:
            if depth == 0:
                conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        else:
            conn.execute("COMMIT" if depth == 0 else f"RELEASE SAVEPOINT {savepoint}")
        finally:
            _local.depth = depth


def init_db() -> None:
    """Create tables and indexes that do not exist yet."""
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS grants (
            handle_id TEXT NOT NULL,
            principal TEXT NOT NULL,
            created_at INTEGER DEFAULT (strftime('%s', 'now')),
            PRIMARY KEY (handle_id, principal)
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS records (
            principal TEXT NOT NULL,
            idx INTEGER NOT NULL,
            timestamp INTEGER NOT NULL,
            record_json TEXT NOT NULL,
            PRIMARY KEY (principal, idx)
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS counters (
            principal TEXT PRIMARY KEY,
            submissions INTEGER NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS ciphertexts (
            handle_id TEXT PRIMARY KEY,
            enc_type INTEGER NOT NULL,
            ciphertext BLOB NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS nonces (
            nonce TEXT PRIMARY KEY,
            expires_at INTEGER NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_nonces_expires
        ON nonces(expires_at);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            event TEXT NOT NULL,
            principal TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            idx INTEGER
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_events_principal
        ON events(principal);""")


# -- Ledger Store

class SqliteLedgerStore(LedgerStore):
    """Persistent ledger store; grants, histories and counters share one database."""

    def transaction(self):
        return _transaction()

    def add_grant(self, handle_id: str, principal: str) -> bool:
        with _transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO grants(handle_id, principal) VALUES(?,?)",
                (handle_id, principal)
            )
            return cur.rowcount == 1

    def has_grant(self, handle_id: str, principal: str) -> bool:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT 1 FROM grants WHERE handle_id=? AND principal=?", (handle_id, principal)
        )
        return cur.fetchone() is not None

    def grantees(self, handle_id: str) -> List[str]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT principal FROM grants WHERE handle_id=? ORDER BY principal", (handle_id,)
        )
        return [row['principal'] for row in cur.fetchall()]

    def append_record(self, principal: str, record: ClassificationRecord) -> int:
        with _transaction() as conn:
            cur = conn.execute("SELECT COUNT(*) AS cnt FROM records WHERE principal=?", (principal,))
            index = cur.fetchone()['cnt']
            conn.execute(
                "INSERT INTO records(principal, idx, timestamp, record_json) VALUES(?,?,?,?)",
                (principal, index, record.timestamp, json.dumps(record.to_dict(), sort_keys=True))
            )
            return index

    def get_record(self, principal: str, index: int) -> Optional[ClassificationRecord]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT record_json FROM records WHERE principal=? AND idx=?", (principal, index)
        )
        row = cur.fetchone()
        return ClassificationRecord.from_dict(json.loads(row['record_json'])) if row else None

    def last_record(self, principal: str) -> Optional[ClassificationRecord]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT record_json FROM records WHERE principal=? ORDER BY idx DESC LIMIT 1", (principal,)
        )
        row = cur.fetchone()
        return ClassificationRecord.from_dict(json.loads(row['record_json'])) if row else None

    def record_count(self, principal: str) -> int:
        conn = _get_connection()
        cur = conn.execute("SELECT COUNT(*) AS cnt FROM records WHERE principal=?", (principal,))
        return cur.fetchone()['cnt']

    def records(self, principal: str) -> List[ClassificationRecord]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT record_json FROM records WHERE principal=? ORDER BY idx ASC", (principal,)
        )
        return [ClassificationRecord.from_dict(json.loads(row['record_json'])) for row in cur.fetchall()]

    def increment_submissions(self, principal: str) -> int:
        with _transaction() as conn:
            conn.execute(
                "INSERT INTO counters(principal, submissions) VALUES(?, 1) "
                "ON CONFLICT(principal) DO UPDATE SET submissions = submissions + 1",
                (principal,)
            )
            cur = conn.execute("SELECT submissions FROM counters WHERE principal=?", (principal,))
            return cur.fetchone()['submissions']

    def submission_count(self, principal: str) -> int:
        conn = _get_connection()
        cur = conn.execute("SELECT submissions FROM counters WHERE principal=?", (principal,))
        row = cur.fetchone()
        return row['submissions'] if row else 0


# -- Ciphertexts

class SqliteCiphertextStore(CiphertextStore):
    """Sealed ciphertexts of the reference coprocessor."""

    def put(self, handle_id: str, enc_type: EncryptedType, ciphertext: bytes) -> None:
        with _transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO ciphertexts(handle_id, enc_type, ciphertext) VALUES(?,?,?)",
                (handle_id, int(enc_type), ciphertext)
            )

    def get(self, handle_id: str) -> Optional[Tuple[EncryptedType, bytes]]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT enc_type, ciphertext FROM ciphertexts WHERE handle_id=?", (handle_id,)
        )
        row = cur.fetchone()
        return (EncryptedType(row['enc_type']), bytes(row['ciphertext'])) if row else None


# -- Nonces (statements and signed envelopes)

class SqliteNonceStore(NonceStore):

    def insert(self, nonce: str, expires_at: int, now: Optional[int] = None) -> bool:
        """False when `nonce` was already used; nonces expired before `now` are purged first."""
        now = int(time.time()) if now is None else now
        try:
            with _transaction() as conn:
                conn.execute("DELETE FROM nonces WHERE expires_at < ?", (now,))
                conn.execute("INSERT INTO nonces(nonce, expires_at) VALUES(?,?)", (nonce, expires_at))
            return True
        except sqlite3.IntegrityError:
            return False

    def cleanup_expired(self, now: Optional[int] = None) -> int:
        now = int(time.time()) if now is None else now
        with _transaction() as conn:
            cur = conn.execute("DELETE FROM nonces WHERE expires_at < ?", (now,))
            return cur.rowcount


# -- Event Log

def append_event(event: RegistryEvent) -> None:
    """Persist a registry event."""
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO events(event, principal, timestamp, idx) VALUES(?,?,?,?)",
            (event.name, event.principal, event.timestamp, event.index)
        )


def export_events(principal: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    """Most recent events, oldest first."""
    conn = _get_connection()
    if principal:
        cur = conn.execute(
            "SELECT seq, event, principal, timestamp, idx FROM events WHERE principal=? "
            "ORDER BY seq DESC LIMIT ?",
            (principal, limit)
        )
    else:
        cur = conn.execute(
            "SELECT seq, event, principal, timestamp, idx FROM events ORDER BY seq DESC LIMIT ?",
            (limit,)
        )
    rows = [dict(row) for row in cur.fetchall()]
    rows.reverse()
    for row in rows:
        row["index"] = row.pop("idx")
        if row["index"] is None:
            del row["index"]
    return rows


# -- Metrics and Health

def get_db_stats() -> Dict[str, int]:
    """Row count per table, reported by /healthz."""
    conn = _get_connection()
    stats = {}
    for table in _TABLES:
        stats[f"{table}_count"] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    return stats


# -- Test Support: Database Reset

def reset_db() -> None:
    """Empty every table, keeping the schema. Used between tests."""
    with _transaction() as conn:
        for table in _TABLES:
            conn.execute(f"DELETE FROM {table}")

