"""
Persistent storage for temporary guest grants.

``GuestGrantRepo`` holds the SQL and works on a connection handed to it, the
same split the rest of the database layer uses. ``GuestRecordStore`` is what
the scheduler services talk to: it owns transactions and turns sqlite errors
into :class:`StorageError`.
"""

from __future__ import annotations

from typing import List, Optional

import aiosqlite

from guestcord.database.db_connection import ConnectionManager, db_connection
from guestcord.datatypes.discord_datatypes import GuildID, UserID
from guestcord.datatypes.guest_datatypes import GuestRecord, StorageError
from guestcord.util.format_utils import from_unix, ensure_utc
from guestcord.util.logger import get_logger

logger = get_logger("guest_record_store")

_COLUMNS = (
    "id, guild_id, account_id, account_tag, granted_at, expires_at, "
    "warning_at, attempts, next_attempt_at, needs_review"
)


def _ts(value) -> Optional[float]:
    return ensure_utc(value).timestamp() if value is not None else None


def _row_to_record(row) -> GuestRecord:
    return GuestRecord(
        id=row[0],
        guild_id=GuildID(row[1]),
        account_id=UserID(row[2]),
        account_tag=row[3],
        granted_at=from_unix(row[4]) if row[4] is not None else None,
        expires_at=from_unix(row[5]),
        warning_at=from_unix(row[6]),
        attempts=int(row[7]),
        next_attempt_at=from_unix(row[8]) if row[8] is not None else None,
        needs_review=bool(row[9]),
    )


class GuestGrantRepo:
    """Low-level CRUD for the ``guest_grants`` table."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, record: GuestRecord) -> None:
        """Insert a grant, replacing any existing grant for the same guild + account."""
        await conn.execute(
            f"""
            INSERT INTO guest_grants ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, account_id) DO UPDATE SET
                id              = excluded.id,
                account_tag     = excluded.account_tag,
                granted_at      = excluded.granted_at,
                expires_at      = excluded.expires_at,
                warning_at      = excluded.warning_at,
                attempts        = excluded.attempts,
                next_attempt_at = excluded.next_attempt_at,
                needs_review    = excluded.needs_review
            """,
            (
                record.id,
                record.guild_id.to_int(),
                str(record.account_id),
                record.account_tag,
                _ts(record.granted_at),
                _ts(record.expires_at),
                _ts(record.warning_at),
                record.attempts,
                _ts(record.next_attempt_at),
                int(record.needs_review),
            ),
        )

    @staticmethod
    async def update_retry_state(conn: aiosqlite.Connection, record: GuestRecord) -> bool:
        """Persist attempts / next_attempt_at / needs_review. Returns False if the row is gone."""
        cursor = await conn.execute(
            "UPDATE guest_grants SET attempts = ?, next_attempt_at = ?, needs_review = ? WHERE id = ?",
            (record.attempts, _ts(record.next_attempt_at), int(record.needs_review), record.id),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def delete(conn: aiosqlite.Connection, grant_id: str) -> bool:
        """Remove a grant row. Returns True if a row was deleted."""
        cursor = await conn.execute("DELETE FROM guest_grants WHERE id = ?", (grant_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[GuestRecord]:
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM guest_grants ORDER BY expires_at")
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    @staticmethod
    async def get(conn: aiosqlite.Connection, grant_id: str) -> Optional[GuestRecord]:
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM guest_grants WHERE id = ?", (grant_id,))
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    @staticmethod
    async def get_by_account(
        conn: aiosqlite.Connection,
        guild_id: GuildID,
        account_id: UserID,
    ) -> Optional[GuestRecord]:
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM guest_grants WHERE guild_id = ? AND account_id = ? LIMIT 1",
            (guild_id.to_int(), str(account_id)),
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    @staticmethod
    async def get_for_guild(conn: aiosqlite.Connection, guild_id: GuildID) -> List[GuestRecord]:
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM guest_grants WHERE guild_id = ? ORDER BY expires_at",
            (guild_id.to_int(),),
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]


class GuestRecordStore:
    """
    Durable store of guest grants used by the scheduler, enforcement and recovery.

    Every method raises :class:`StorageError` when SQLite fails. Deleting a
    grant that no longer exists is not an error.
    """

    def __init__(self, connection: ConnectionManager = db_connection) -> None:
        self._db = connection

    async def find_all(self) -> List[GuestRecord]:
        """Return every persisted grant, soonest expiry first."""
        try:
            async with self._db.read() as conn:
                return await GuestGrantRepo.get_all(conn)
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load guest grants: {exc}") from exc

    async def find_for_guild(self, guild_id: GuildID) -> List[GuestRecord]:
        try:
            async with self._db.read() as conn:
                return await GuestGrantRepo.get_for_guild(conn, GuildID(guild_id))
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load guest grants for guild {guild_id}: {exc}") from exc

    async def get(self, grant_id: str) -> Optional[GuestRecord]:
        try:
            async with self._db.read() as conn:
                return await GuestGrantRepo.get(conn, grant_id)
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load guest grant {grant_id}: {exc}") from exc

    async def get_by_account(self, guild_id: GuildID, account_id: UserID) -> Optional[GuestRecord]:
        try:
            async with self._db.read() as conn:
                return await GuestGrantRepo.get_by_account(conn, GuildID(guild_id), UserID(account_id))
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load guest grant for {account_id}: {exc}") from exc

    async def save(self, record: GuestRecord) -> None:
        """Persist a grant, replacing an existing grant for the same account."""
        try:
            async with self._db.transaction() as conn:
                await GuestGrantRepo.upsert(conn, record)
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to save guest grant {record.id}: {exc}") from exc
        logger.debug("[GUEST STORE] Saved grant %s for %s", record.id, record.display_name)

    async def update_retry_state(self, record: GuestRecord) -> bool:
        """Persist the retry bookkeeping of ``record``. Returns False if the row is gone."""
        try:
            async with self._db.transaction() as conn:
                return await GuestGrantRepo.update_retry_state(conn, record)
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to update retry state of grant {record.id}: {exc}") from exc

    async def delete(self, grant_id: str) -> bool:
        """Delete a grant. Returns False (not an error) when it was already gone."""
        try:
            async with self._db.transaction() as conn:
                deleted = await GuestGrantRepo.delete(conn, grant_id)
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to delete guest grant {grant_id}: {exc}") from exc

        if not deleted:
            logger.debug("[GUEST STORE] Grant %s already deleted", grant_id)
        return deleted
