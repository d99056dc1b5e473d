"""
Shared utilities for Guestcord.

- **logger.py**: Console + session log file configuration used by every module.
- **format_utils.py**: UTC clock helpers and human-friendly duration rendering.
- **discord/**: The Discord-facing gateway used by the scheduler services.
"""
