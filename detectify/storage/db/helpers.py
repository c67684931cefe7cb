"""Database row conversion helpers."""

from __future__ import annotations

import json
from typing import Optional


class DatabaseFetchMixin:
    """Row conversion helpers."""

    async def _fetchone_dict(self, cursor) -> Optional[dict]:
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetchall_dicts(self, cursor) -> list[dict]:
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _decode_result_row(row: Optional[dict]) -> Optional[dict]:
        """Decode JSON/boolean columns of an analysis_results row."""
        if row is None:
            return None
        raw = row.get("chatbot_solutions")
        try:
            solutions = json.loads(raw) if raw else []
        except (TypeError, ValueError):
            solutions = [raw] if raw else []
        row["chatbot_solutions"] = solutions if isinstance(solutions, list) else [str(solutions)]
        row["has_chatbot"] = bool(row.get("has_chatbot"))
        return row
