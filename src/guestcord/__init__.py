"""
Guestcord: temporary guest access for Discord servers.

Grants are persisted in SQLite, warned before they end and enforced by an
asyncio scheduler that rebuilds its timers from the database on startup.
"""
