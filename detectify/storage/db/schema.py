"""Database schema creation helpers."""

from __future__ import annotations


class DatabaseSchemaMixin:
    """Database schema creation helpers."""

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._lock:
            await self._connection.executescript(
                """
                    CREATE TABLE IF NOT EXISTS analysis_results (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        url TEXT UNIQUE NOT NULL,
                        has_chatbot BOOLEAN DEFAULT FALSE,
                        chatbot_solutions TEXT DEFAULT '[]',
                        confidence REAL DEFAULT 0,
                        verification_status TEXT DEFAULT 'unknown',
                        status TEXT DEFAULT 'pending',
                        error TEXT,
                        last_checked TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE INDEX IF NOT EXISTS idx_results_status ON analysis_results(status);
                    CREATE INDEX IF NOT EXISTS idx_results_last_checked ON analysis_results(last_checked);
                """
            )
            await self._connection.commit()
