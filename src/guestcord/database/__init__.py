"""
SQLite persistence for Guestcord.

- **db_connection.py**: One long-lived aiosqlite connection with WAL pragmas,
  serialised write transactions and lock-free reads.
- **db_schema.py**: Creates the ``guest_grants`` table, its indexes and the
  schema version row.
"""
