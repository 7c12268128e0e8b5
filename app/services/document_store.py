from __future__ import annotations

import json
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Protocol


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore(Protocol):
    """Owner-scoped access to stored CV documents."""

    def get_document(self, user_id: str, document_id: str) -> dict[str, Any] | None: ...

    def save_analysis(self, user_id: str, document_id: str, analysis: dict[str, Any]) -> None: ...


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put_document(self, user_id: str, document_id: str, content: Any, title: str = "") -> None:
        with self._lock:
            self._documents[(user_id, document_id)] = {
                "document_id": document_id,
                "title": title,
                "content": content,
                "ai_suggestions": None,
            }

    def get_document(self, user_id: str, document_id: str) -> dict[str, Any] | None:
        with self._lock:
            found = self._documents.get((user_id, document_id))
            return dict(found) if found else None

    def save_analysis(self, user_id: str, document_id: str, analysis: dict[str, Any]) -> None:
        with self._lock:
            found = self._documents.get((user_id, document_id))
            if found is not None:
                found["ai_suggestions"] = analysis


class SqliteDocumentStore:
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
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cv_documents (
                    document_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    content_json TEXT NOT NULL,
                    ai_suggestions_json TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, document_id)
                );
                """
            )
            self._conn = conn
            return conn

    def put_document(self, user_id: str, document_id: str, content: Any, title: str = "") -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                """
                INSERT INTO cv_documents (document_id, user_id, title, content_json, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, document_id) DO UPDATE SET
                    title = excluded.title,
                    content_json = excluded.content_json,
                    updated_at = excluded.updated_at
                """,
                (document_id, user_id, title, json.dumps(content, ensure_ascii=False), _utc_now()),
            )
            conn.commit()

    def get_document(self, user_id: str, document_id: str) -> dict[str, Any] | None:
        conn = self._get_connection()
        with self._conn_lock:
            cur = conn.execute(
                """
                SELECT document_id, title, content_json, ai_suggestions_json
                FROM cv_documents
                WHERE user_id = ? AND document_id = ?
                """,
                (user_id, document_id),
            )
            row = cur.fetchone()
        if not row:
            return None
        return {
            "document_id": row[0],
            "title": row[1],
            "content": json.loads(row[2]),
            "ai_suggestions": json.loads(row[3]) if row[3] else None,
        }

    def save_analysis(self, user_id: str, document_id: str, analysis: dict[str, Any]) -> None:
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                """
                UPDATE cv_documents
                SET ai_suggestions_json = ?, updated_at = ?
                WHERE user_id = ? AND document_id = ?
                """,
                (json.dumps(analysis, ensure_ascii=False), _utc_now(), user_id, document_id),
            )
            conn.commit()

    def close(self) -> None:
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
