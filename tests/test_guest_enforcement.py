"""Tests for guest_enforcement module."""

import asyncio
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from guestcord.configuration.guest_settings import GuestAccessSettings, RetrySettings
from guestcord.datatypes.guest_datatypes import (
    EnforcementStatus,
    RemovalError,
    StorageError,
    TransientNetworkError,
)
from guestcord.scheduler.timer_registry import TimerRegistry
from guestcord.services.guest_enforcement import GuestEnforcement
from guestcord.services.notification_dispatcher import NotificationDispatcher
from guest_fakes import EPOCH, FakeClock, FakeGateway, FakeStore, make_record


@pytest.fixture
def harness():
    clock = FakeClock(EPOCH + timedelta(days=7))
    gateway = FakeGateway()
    record = make_record()
    store = FakeStore([record])
    registry = TimerRegistry()
    sleep = AsyncMock()
    enforcement = GuestEnforcement(
        gateway,
        store,
        NotificationDispatcher(gateway, clock=clock),
        registry,
        settings=GuestAccessSettings({"final_notice_delay_seconds": 1.0}),
        retry=RetrySettings({"max_attempts": 3, "base_delay_seconds": 60, "max_delay_seconds": 600}),
        clock=clock,
        sleep=sleep,
    )
    return enforcement, gateway, store, record, clock, sleep


class TestExpireGuest:
    """Tests for GuestEnforcement.expire_guest()."""

    @pytest.mark.asyncio
    async def test_member_present_is_notified_then_kicked(self, harness):
        enforcement, gateway, store, record, _, sleep = harness
        gateway.add_member(100, 200)

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.REMOVED
        assert outcome.detail == "removed"
        assert len(gateway.direct_messages) == 1
        assert gateway.removed == [(200, "Temporary guest access expired")]
        sleep.assert_awaited_once_with(1.0)
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_member_already_left(self, harness):
        """Absent member: no DM, no kick, record still retired."""
        enforcement, gateway, store, record, _, _ = harness
        gateway.spaces["100"] = SimpleNamespace(id=100, name="Guild 100")

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.REMOVED
        assert outcome.detail == "member already left"
        assert gateway.direct_messages == []
        assert gateway.removed == []
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_guild_gone(self, harness):
        enforcement, gateway, store, record, _, _ = harness

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.REMOVED
        assert outcome.detail == "guild gone"
        assert store.delete_calls == [record.id]

    @pytest.mark.asyncio
    async def test_promoted_member_is_kept(self, harness):
        """A member who lost the guest role was promoted and is not kicked."""
        enforcement, gateway, store, record, _, _ = harness
        enforcement.settings = GuestAccessSettings({"guest_role_id": 555, "final_notice_delay_seconds": 0})
        gateway.add_member(100, 200, roles=(777,))

        outcome = await enforcement.expire_guest(record)

        assert outcome.detail == "member promoted"
        assert gateway.removed == []
        assert gateway.direct_messages == []
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_guest_role_holder_is_kicked(self, harness):
        enforcement, gateway, _, record, _, _ = harness
        enforcement.settings = GuestAccessSettings({"guest_role_id": 555, "final_notice_delay_seconds": 0})
        gateway.add_member(100, 200, roles=(555,))

        outcome = await enforcement.expire_guest(record)

        assert outcome.detail == "removed"
        assert gateway.removed == [(200, "Temporary guest access expired")]

    @pytest.mark.asyncio
    async def test_failed_final_notice_does_not_block_kick(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.add_member(100, 200)
        gateway.dm_result = False

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.REMOVED
        assert gateway.removed
        assert store.records == {}


class TestFailures:
    """Kick or delete failures keep the grant and schedule a bounded retry."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TransientNetworkError("timeout"), RemovalError("403")])
    async def test_removal_failure_keeps_record_for_retry(self, harness, error):
        enforcement, gateway, store, record, clock, _ = harness
        gateway.add_member(100, 200)
        gateway.remove_error = error

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.RETRY
        assert outcome.should_retry
        assert outcome.record.attempts == 1
        assert outcome.record.next_attempt_at == clock() + timedelta(seconds=60)
        assert store.records[record.id].attempts == 1
        assert store.delete_calls == []

    @pytest.mark.asyncio
    async def test_lookup_failure_is_retried(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.fetch_space_error = TransientNetworkError("502")

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.RETRY
        assert store.records[record.id].attempts == 1

    @pytest.mark.asyncio
    async def test_retry_skips_final_notice(self, harness):
        """A retried expiry repeats the kick but not the DM."""
        enforcement, gateway, store, record, clock, sleep = harness
        gateway.add_member(100, 200)
        retried = record.with_failed_attempt(clock() + timedelta(minutes=1))
        store.records[record.id] = retried

        outcome = await enforcement.expire_guest(retried)

        assert outcome.status is EnforcementStatus.REMOVED
        assert gateway.direct_messages == []
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, harness):
        enforcement, gateway, _, record, clock, _ = harness
        gateway.add_member(100, 200)
        gateway.remove_error = TransientNetworkError("timeout")

        second = await enforcement.expire_guest(record.with_failed_attempt(clock()))

        assert second.record.attempts == 2
        assert second.record.next_attempt_at == clock() + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_exhausted_retries_flag_for_review(self, harness):
        enforcement, gateway, store, record, clock, _ = harness
        gateway.add_member(100, 200)
        gateway.remove_error = RemovalError("403")
        worn = record.with_failed_attempt(clock()).with_failed_attempt(clock())

        outcome = await enforcement.expire_guest(worn)

        assert outcome.status is EnforcementStatus.NEEDS_REVIEW
        assert not outcome.should_retry
        assert store.records[record.id].needs_review is True
        assert store.records[record.id].attempts == 3

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_record(self, harness):
        """Member removed but row not deleted: retry instead of losing track."""
        enforcement, gateway, store, record, _, _ = harness
        gateway.add_member(100, 200)
        store.delete_error = StorageError("disk I/O error")

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.RETRY
        assert store.records[record.id].attempts == 1

    @pytest.mark.asyncio
    async def test_retry_state_write_failure_still_retries(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.remove_error = TransientNetworkError("timeout")
        gateway.add_member(100, 200)
        store.update_retry_state = AsyncMock(side_effect=StorageError("locked"))

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.RETRY

    @pytest.mark.asyncio
    async def test_grant_deleted_meanwhile_is_skipped(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.add_member(100, 200)
        gateway.remove_error = TransientNetworkError("timeout")
        store.records.clear()

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.SKIPPED


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_concurrent_expiry_runs_once(self, harness):
        enforcement, gateway, store, record, _, sleep = harness
        gateway.add_member(100, 200)
        release = asyncio.Event()

        async def slow_sleep(_seconds):
            await release.wait()

        sleep.side_effect = slow_sleep

        first = asyncio.create_task(enforcement.expire_guest(record))
        await asyncio.sleep(0)
        second = await enforcement.expire_guest(record)
        release.set()
        first_outcome = await first

        assert second.status is EnforcementStatus.SKIPPED
        assert first_outcome.status is EnforcementStatus.REMOVED
        assert len(gateway.removed) == 1

    @pytest.mark.asyncio
    async def test_second_expiry_after_removal_is_harmless(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.add_member(100, 200)

        await enforcement.expire_guest(record)
        again = await enforcement.expire_guest(record)

        assert again.status is EnforcementStatus.REMOVED
        assert again.detail == "member already left"
        assert len(gateway.removed) == 1


class TestSupersededGrant:
    """The grant row is re-read before the notice and again before the kick."""

    @pytest.mark.asyncio
    async def test_grant_replaced_during_pause_is_not_kicked(self, harness):
        enforcement, gateway, store, record, _, sleep = harness
        gateway.add_member(100, 200)

        async def regranted(_seconds):
            store.records.pop(record.id)

        sleep.side_effect = regranted

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.SKIPPED
        assert outcome.detail == "grant superseded"
        assert len(gateway.direct_messages) == 1
        assert gateway.removed == []
        assert store.delete_calls == []

    @pytest.mark.asyncio
    async def test_grant_gone_before_notice_sends_nothing(self, harness):
        enforcement, gateway, store, record, _, sleep = harness
        gateway.add_member(100, 200)
        store.records.clear()

        outcome = await enforcement.expire_guest(record)

        assert outcome.detail == "grant superseded"
        assert gateway.direct_messages == []
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_recheck_is_retried(self, harness):
        enforcement, gateway, store, record, _, _ = harness
        gateway.add_member(100, 200)
        store.get = AsyncMock(side_effect=StorageError("database is locked"))

        outcome = await enforcement.expire_guest(record)

        assert outcome.status is EnforcementStatus.RETRY
        assert gateway.removed == []
        assert store.records[record.id].attempts == 1
