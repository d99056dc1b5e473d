"""
Database schema initialization and version tracking.

Timestamps are stored as REAL unix seconds (UTC) so due-date comparisons
need no string parsing or timezone conversion.
"""

import aiosqlite
from guestcord.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the guest access tables, indexes and schema version row."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all database tables and indexes.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS guest_grants (
                id TEXT PRIMARY KEY,
                guild_id INTEGER NOT NULL,
                account_id TEXT NOT NULL,
                account_tag TEXT,
                granted_at REAL,
                expires_at REAL NOT NULL,
                warning_at REAL NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                next_attempt_at REAL,
                needs_review INTEGER NOT NULL DEFAULT 0,
                UNIQUE (guild_id, account_id),
                CHECK (warning_at < expires_at)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_guest_grants_expires ON guest_grants(expires_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_guest_grants_review ON guest_grants(needs_review)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
