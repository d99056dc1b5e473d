"""
Shared data types for Guestcord.

- **discord_datatypes.py**: Type-safe snowflake wrappers (UserID, GuildID, RoleID).
- **guest_datatypes.py**: GuestRecord, grant/enforcement enums, the recovery
  summary and the error hierarchy of the guest access subsystem.
"""
