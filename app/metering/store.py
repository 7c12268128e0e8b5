from __future__ import annotations

import os
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from app.metering.errors import OperationType
from app.metering.models import FileFingerprint, UsageRecord


class UsageStore(Protocol):
    """Record store for usage counters, keyed by (user_id, period_start)."""

    def get_record(self, user_id: str, period_start: datetime) -> UsageRecord | None: ...

    def latest_record(self, user_id: str) -> UsageRecord | None: ...

    def create_record(self, record: UsageRecord) -> UsageRecord: ...

    def increment(
        self, user_id: str, period_start: datetime, op_type: OperationType, cost: float
    ) -> UsageRecord: ...

    def history(self, user_id: str) -> list[UsageRecord]: ...


class FingerprintStore(Protocol):
    """Record store for parsed-document fingerprints, keyed by hash."""

    def get_fingerprint(self, fingerprint_hash: str) -> FileFingerprint | None: ...

    def put_fingerprint(self, fingerprint: FileFingerprint) -> None: ...


class InMemoryUsageStore:
    def __init__(self) -> None:
        self._records: dict[tuple[str, datetime], UsageRecord] = {}
        self._fingerprints: dict[str, FileFingerprint] = {}
        self._lock = threading.Lock()

    def get_record(self, user_id: str, period_start: datetime) -> UsageRecord | None:
        with self._lock:
            return self._records.get((user_id, period_start))

    def latest_record(self, user_id: str) -> UsageRecord | None:
        with self._lock:
            records = [r for (uid, _), r in self._records.items() if uid == user_id]
        if not records:
            return None
        return max(records, key=lambda r: r.period_start)

    def create_record(self, record: UsageRecord) -> UsageRecord:
        key = (record.user_id, record.period_start)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                return existing
            self._records[key] = record
            return record

    def increment(
        self, user_id: str, period_start: datetime, op_type: OperationType, cost: float
    ) -> UsageRecord:
        key = (user_id, period_start)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise KeyError(f"No usage record for user={user_id} period={period_start.isoformat()}")
            updated = current.incremented(op_type, cost)
            self._records[key] = updated
            return updated

    def history(self, user_id: str) -> list[UsageRecord]:
        with self._lock:
            records = [r for (uid, _), r in self._records.items() if uid == user_id]
        return sorted(records, key=lambda r: r.period_start)

    def get_fingerprint(self, fingerprint_hash: str) -> FileFingerprint | None:
        with self._lock:
            return self._fingerprints.get(fingerprint_hash)

    def put_fingerprint(self, fingerprint: FileFingerprint) -> None:
        with self._lock:
            existing = self._fingerprints.get(fingerprint.hash)
            if existing is not None:
                fingerprint = replace(fingerprint, first_seen_at=existing.first_seen_at)
            self._fingerprints[fingerprint.hash] = fingerprint


class SqliteUsageStore:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        with self._conn_lock:
            if self._conn is not None:
                return self._conn

            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                timeout=5,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_records (
                    user_id TEXT NOT NULL,
                    period_start TEXT NOT NULL,
                    period_end TEXT NOT NULL,
                    parsing_count INTEGER NOT NULL DEFAULT 0,
                    ai_call_count INTEGER NOT NULL DEFAULT 0,
                    accumulated_cost REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY (user_id, period_start)
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS file_fingerprints (
                    fingerprint_hash TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    first_seen_at TEXT NOT NULL,
                    last_cost REAL NOT NULL,
                    text TEXT,
                    confidence REAL,
                    provider TEXT
                );
                """
            )
            self._conn = conn
            return conn

    @staticmethod
    def _row_to_record(row: tuple) -> UsageRecord:
        return UsageRecord(
            user_id=row[0],
            period_start=datetime.fromisoformat(row[1]),
            period_end=datetime.fromisoformat(row[2]),
            parsing_count=int(row[3]),
            ai_call_count=int(row[4]),
            accumulated_cost=float(row[5]),
        )

    def get_record(self, user_id: str, period_start: datetime) -> UsageRecord | None:
        conn = self._get_connection()
        with self._conn_lock:
            cur = conn.execute(
                """
                SELECT user_id, period_start, period_end, parsing_count, ai_call_count, accumulated_cost
                FROM usage_records
                WHERE user_id = ? AND period_start = ?
                """,
                (user_id, period_start.isoformat()),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def latest_record(self, user_id: str) -> UsageRecord | None:
        conn = self._get_connection()
        with self._conn_lock:
            cur = conn.execute(
                """
                SELECT user_id, period_start, period_end, parsing_count, ai_call_count, accumulated_cost
                FROM usage_records
                WHERE user_id = ?
                ORDER BY period_start DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return self._row_to_record(row) if row else None

    def create_record(self, record: UsageRecord) -> UsageRecord:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                """
                INSERT OR IGNORE INTO usage_records (
                    user_id, period_start, period_end, parsing_count, ai_call_count, accumulated_cost
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.period_start.isoformat(),
                    record.period_end.isoformat(),
                    record.parsing_count,
                    record.ai_call_count,
                    record.accumulated_cost,
                ),
            )
            conn.commit()
        stored = self.get_record(record.user_id, record.period_start)
        return stored if stored is not None else record

    def increment(
        self, user_id: str, period_start: datetime, op_type: OperationType, cost: float
    ) -> UsageRecord:
        column = "parsing_count" if op_type == "parsing" else "ai_call_count"
        conn = self._get_connection()
        with self._conn_lock:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                cursor.execute(
                    f"""
                    UPDATE usage_records
                    SET {column} = {column} + 1, accumulated_cost = accumulated_cost + ?
                    WHERE user_id = ? AND period_start = ?
                    """,
                    (cost, user_id, period_start.isoformat()),
                )
                if cursor.rowcount == 0:
                    raise KeyError(f"No usage record for user={user_id} period={period_start.isoformat()}")
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        updated = self.get_record(user_id, period_start)
        if updated is None:
            raise KeyError(f"No usage record for user={user_id} period={period_start.isoformat()}")
        return updated

    def history(self, user_id: str) -> list[UsageRecord]:
        conn = self._get_connection()
        with self._conn_lock:
            cur = conn.execute(
                """
                SELECT user_id, period_start, period_end, parsing_count, ai_call_count, accumulated_cost
                FROM usage_records
                WHERE user_id = ?
                ORDER BY period_start ASC
                """,
                (user_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_fingerprint(self, fingerprint_hash: str) -> FileFingerprint | None:
        conn = self._get_connection()
        with self._conn_lock:
            cur = conn.execute(
                """
                SELECT fingerprint_hash, user_id, first_seen_at, last_cost, text, confidence, provider
                FROM file_fingerprints
                WHERE fingerprint_hash = ?
                """,
                (fingerprint_hash,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return FileFingerprint(
            hash=row[0],
            user_id=row[1],
            first_seen_at=datetime.fromisoformat(row[2]),
            last_cost=float(row[3]),
            text=row[4],
            confidence=float(row[5]) if row[5] is not None else None,
            provider=row[6],
        )

    def put_fingerprint(self, fingerprint: FileFingerprint) -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                """
                INSERT INTO file_fingerprints (
                    fingerprint_hash, user_id, first_seen_at, last_cost, text, confidence, provider
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(fingerprint_hash) DO UPDATE SET
                    last_cost = excluded.last_cost,
                    text = excluded.text,
                    confidence = excluded.confidence,
                    provider = excluded.provider
                """,
                (
                    fingerprint.hash,
                    fingerprint.user_id,
                    fingerprint.first_seen_at.isoformat(),
                    fingerprint.last_cost,
                    fingerprint.text,
                    fingerprint.confidence,
                    fingerprint.provider,
                ),
            )
            conn.commit()

    def close(self) -> None:
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
