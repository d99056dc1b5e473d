"""
Configuration management for Guestcord.

- **app_configuration.py**: fcntl-locked YAML loader for global settings
  (``config/app_config.yml``). Falls back to defaults on missing or malformed
  files.

- **guest_settings.py**: Typed views over the ``guest_access`` section (grant
  durations, kick reason, Discord call timeout, guest role) and the ``retry``
  section (bounded backoff for failed expiries).
"""
