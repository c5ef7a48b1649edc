from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from hunt_analyzer.models import RunSummary


class RunStorage:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    total_products INTEGER NOT NULL,
                    success_count INTEGER NOT NULL,
                    error_count INTEGER NOT NULL,
                    markdown TEXT NOT NULL,
                    json_content TEXT NOT NULL
                )
                """
            )

    def save_run(self, summary: RunSummary, markdown: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO runs (run_id, created_at, total_products, success_count, error_count, markdown, json_content)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(run_id) DO UPDATE SET
                    created_at=excluded.created_at,
                    total_products=excluded.total_products,
                    success_count=excluded.success_count,
                    error_count=excluded.error_count,
                    markdown=excluded.markdown,
                    json_content=excluded.json_content
                """,
                (
                    summary.run_id,
                    summary.timestamp,
                    summary.total_products,
                    summary.success_count,
                    summary.error_count,
                    markdown,
                    json.dumps(summary.to_dict(), ensure_ascii=False),
                ),
            )

    def list_runs(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, created_at, total_products, success_count, error_count "
                "FROM runs ORDER BY created_at DESC, run_id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT run_id, created_at, total_products, success_count, error_count, markdown, json_content "
                "FROM runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        return dict(row) if row else None

    def latest_run(self) -> Optional[Dict[str, Any]]:
        runs = self.list_runs(limit=1)
        return self.get_run(runs[0]["run_id"]) if runs else None

    def prune(self, keep: int) -> int:
        if keep <= 0:
            return 0
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM runs WHERE run_id NOT IN (
                    SELECT run_id FROM runs ORDER BY created_at DESC, run_id DESC LIMIT ?
                )
                """,
                (keep,),
            )
            return cursor.rowcount
