"""
User-facing Discord presentation.

- **guest_embeds.py**: Welcome, expiry warning and final notice embeds sent
  to guests by direct message.
"""
