"""
Guest access services.

- **notification_dispatcher.py**: Best-effort welcome, warning and final
  notice DMs.
- **guest_enforcement.py**: Expiry of a grant (final notice, kick, delete)
  with bounded retries and manual-review flagging.
- **guest_access_service.py**: Grant / revoke / list flow and the wiring of
  every guest access component.
"""
