"""
Data access for Guestcord.

- **guest_record_store.py**: SQL for the ``guest_grants`` table
  (``GuestGrantRepo``) and the transactional ``GuestRecordStore`` the
  scheduler, enforcement and recovery code depend on.
"""
