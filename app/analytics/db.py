from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from app.core.config import settings
from app.metering.models import CallOutcome


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_db_path() -> Path:
    return Path(settings.audit_db_path)


def init_db() -> None:
    if not settings.audit_enabled:
        return
    db_path = _get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS provider_calls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                user_id TEXT NOT NULL,
                tier_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                operation TEXT NOT NULL,
                tokens_in INTEGER NOT NULL DEFAULT 0,
                tokens_out INTEGER NOT NULL DEFAULT 0,
                pages INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                success INTEGER NOT NULL,
                error_kind TEXT,
                attempts_json TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_provider_calls_created_at
            ON provider_calls (created_at)
            """
        )
        conn.commit()
    purge_old_records()


def log_provider_call(outcome: CallOutcome, *, user_id: str, tier_id: str) -> None:
    if not settings.audit_enabled:
        return
    db_path = _get_db_path()
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO provider_calls (
                created_at, user_id, tier_id, provider, operation, tokens_in, tokens_out,
                pages, cost, duration_ms, success, error_kind, attempts_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _utc_now(),
                user_id,
                tier_id,
                outcome.provider,
                outcome.operation,
                outcome.tokens_in,
                outcome.tokens_out,
                outcome.pages,
                outcome.cost,
                outcome.duration_ms,
                1 if outcome.success else 0,
                outcome.error_kind,
                json.dumps(outcome.attempts),
            ),
        )
        conn.commit()


def purge_old_records() -> dict[str, int]:
    if not settings.audit_enabled:
        return {"provider_calls": 0}

    retention = max(1, int(settings.audit_retention_days))
    cutoff = (datetime.now(timezone.utc) - timedelta(days=retention)).isoformat()
    with sqlite3.connect(_get_db_path()) as conn:
        cur = conn.execute("DELETE FROM provider_calls WHERE created_at < ?", (cutoff,))
        deleted = int(cur.rowcount or 0)
        conn.commit()
    return {"provider_calls": deleted}


def _row_to_dict(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def get_summary() -> dict[str, Any]:
    if not settings.audit_enabled:
        return {"enabled": False}
    with sqlite3.connect(_get_db_path()) as conn:
        cur = conn.execute(
            """
            SELECT provider,
                   COUNT(*) AS calls,
                   SUM(success) AS succeeded,
                   ROUND(SUM(cost), 6) AS total_cost,
                   CAST(AVG(duration_ms) AS INTEGER) AS avg_duration_ms
            FROM provider_calls
            GROUP BY provider
            ORDER BY calls DESC
            """
        )
        providers = [_row_to_dict(cur, row) for row in cur.fetchall()]
        cur = conn.execute(
            """
            SELECT error_kind, COUNT(*) AS count
            FROM provider_calls
            WHERE success = 0
            GROUP BY error_kind
            ORDER BY count DESC
            """
        )
        failures = [_row_to_dict(cur, row) for row in cur.fetchall()]
    return {"enabled": True, "providers": providers, "failures": failures}


def get_latest(limit: int = 20) -> list[dict[str, Any]]:
    if not settings.audit_enabled:
        return []
    with sqlite3.connect(_get_db_path()) as conn:
        cur = conn.execute(
            """
            SELECT created_at, user_id, tier_id, provider, operation, tokens_in, tokens_out,
                   pages, cost, duration_ms, success, error_kind
            FROM provider_calls
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        rows = cur.fetchall()
        return [_row_to_dict(cur, row) for row in rows]
