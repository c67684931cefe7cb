"""analysis_results reads and writes."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from ..enums import ResultPhase


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseResultsMixin:
    """CRUD for stored classification results, keyed by URL."""

    async def get_result(self, url: str) -> Optional[dict]:
        """Fetch the stored row for a URL, or None."""
        conn = self._require_connection()
        cursor = await conn.execute("SELECT * FROM analysis_results WHERE url = ?", (url,))
        return self._decode_result_row(await self._fetchone_dict(cursor))

    async def upsert_result(self, record: dict) -> bool:
        """Insert or overwrite a row; returns True when the URL was new.

        Later writes always replace earlier ones for the same URL.
        """
        conn = self._require_connection()
        url = record["url"]
        solutions = list(record.get("chatbot_solutions") or [])
        values = (
            url,
            bool(record.get("has_chatbot", bool(solutions))),
            json.dumps(solutions),
            float(record.get("confidence") or 0.0),
            record.get("verification_status") or "unknown",
            record.get("status") or ResultPhase.COMPLETED.value,
            record.get("error"),
            record.get("last_checked") or _now_iso(),
        )
        async with self._lock:
            cursor = await conn.execute("SELECT 1 FROM analysis_results WHERE url = ?", (url,))
            existed = await cursor.fetchone() is not None
            await conn.execute(
                """
                INSERT INTO analysis_results (
                    url, has_chatbot, chatbot_solutions, confidence,
                    verification_status, status, error, last_checked
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET
                    has_chatbot = excluded.has_chatbot,
                    chatbot_solutions = excluded.chatbot_solutions,
                    confidence = excluded.confidence,
                    verification_status = excluded.verification_status,
                    status = excluded.status,
                    error = excluded.error,
                    last_checked = excluded.last_checked,
                    updated_at = CURRENT_TIMESTAMP
                """,
                values,
            )
            await conn.commit()
        return not existed

    async def set_status(
        self,
        url: str,
        status: ResultPhase | str,
        error: Optional[str] = None,
    ) -> bool:
        """Record a phase/status change without touching the classification."""
        conn = self._require_connection()
        status_value = status.value if isinstance(status, ResultPhase) else str(status)
        async with self._lock:
            cursor = await conn.execute("SELECT 1 FROM analysis_results WHERE url = ?", (url,))
            existed = await cursor.fetchone() is not None
            if existed:
                await conn.execute(
                    """
                    UPDATE analysis_results
                    SET status = ?, error = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE url = ?
                    """,
                    (status_value, error, url),
                )
            else:
                await conn.execute(
                    "INSERT INTO analysis_results (url, status, error) VALUES (?, ?, ?)",
                    (url, status_value, error),
                )
            await conn.commit()
        return not existed

    async def delete_result(self, url: str) -> bool:
        conn = self._require_connection()
        async with self._lock:
            cursor = await conn.execute("DELETE FROM analysis_results WHERE url = ?", (url,))
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def clear_results(self) -> int:
        conn = self._require_connection()
        async with self._lock:
            cursor = await conn.execute("DELETE FROM analysis_results")
            await conn.commit()
            return cursor.rowcount or 0

    async def list_results(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        status: Optional[str] = None,
        has_chatbot: Optional[bool] = None,
    ) -> list[dict]:
        """List stored rows, most recently updated first."""
        conn = self._require_connection()
        clauses: list[str] = []
        params: list = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if has_chatbot is not None:
            clauses.append("has_chatbot = ?")
            params.append(bool(has_chatbot))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await conn.execute(
            f"""
            SELECT * FROM analysis_results
            {where}
            ORDER BY updated_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, int(limit), int(offset)),
        )
        return [self._decode_result_row(row) for row in await self._fetchall_dicts(cursor)]

    async def count_results(self) -> dict:
        """Totals used by the health endpoint."""
        conn = self._require_connection()
        cursor = await conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN has_chatbot THEN 1 ELSE 0 END) AS with_chatbot,
                SUM(CASE WHEN error IS NOT NULL THEN 1 ELSE 0 END) AS failed
            FROM analysis_results
            """
        )
        row = await self._fetchone_dict(cursor) or {}
        return {key: int(row.get(key) or 0) for key in ("total", "with_chatbot", "failed")}
