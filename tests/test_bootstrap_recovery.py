"""Tests for bootstrap_recovery module."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from guestcord.scheduler.bootstrap_recovery import BootstrapRecovery
from guestcord.util.format_utils import utc_now
from guest_fakes import build_stack, make_record, storage_failure


class TestBootstrapRecovery:
    """Tests for BootstrapRecovery.recover_all()."""

    @pytest.mark.asyncio
    async def test_rebuilds_timers_and_expires_overdue(self):
        """Future grants get timers; grants that expired while offline are enforced."""
        now = utc_now()
        future = make_record("future", now=now, account_id=201)
        overdue = make_record("overdue", now=now - timedelta(days=10), account_id=202)
        review = make_record("review", now=now - timedelta(days=10), account_id=203, needs_review=True, attempts=5)
        stack = build_stack()
        for record in (future, overdue, review):
            stack.store.records[record.id] = record
        stack.gateway.add_member(100, 202)
        recovery = BootstrapRecovery(stack.store, stack.scheduler)

        summary = await recovery.recover_all()

        assert summary.total == 3
        assert summary.scheduled == 1
        assert summary.expired == 1
        assert summary.needs_review == 1
        assert summary.failed == 0
        assert stack.scheduler.is_scheduled("future")
        assert "overdue" not in stack.store.records
        assert "review" in stack.store.records
        assert [member_id for member_id, _ in stack.gateway.removed] == [202]

        await stack.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_future_records_get_expiry_and_pending_warnings(self):
        now = utc_now()
        stack = build_stack()
        records = [make_record(f"g{idx}", now=now, account_id=200 + idx) for idx in range(3)]
        records.append(
            make_record("late-warning", now=now, account_id=210, warning_in=timedelta(hours=-1))
        )
        for record in records:
            stack.store.records[record.id] = record

        summary = await BootstrapRecovery(stack.store, stack.scheduler).recover_all()

        assert summary.scheduled == 4
        assert stack.scheduler.active_count == 4
        warnings = [stack.registry.get(r.id).warning_task for r in records]
        assert sum(task is not None for task in warnings) == 3
        assert stack.registry.get("late-warning").warning_task is None

        await stack.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_running_twice_does_not_double_arm(self):
        stack = build_stack()
        stack.store.records["g1"] = make_record("g1", now=utc_now())
        recovery = BootstrapRecovery(stack.store, stack.scheduler)

        await recovery.recover_all()
        first = stack.registry.get("g1")
        summary = await recovery.recover_all()

        assert summary.scheduled == 1
        assert stack.scheduler.active_count == 1
        assert stack.registry.get("g1") is first

        await stack.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_store_failure_returns_empty_summary(self):
        stack = build_stack()
        stack.store.find_all_error = storage_failure()

        summary = await BootstrapRecovery(stack.store, stack.scheduler).recover_all()

        assert summary.total == 0
        assert stack.scheduler.active_count == 0

    @pytest.mark.asyncio
    async def test_one_bad_record_does_not_stop_the_pass(self):
        stack = build_stack()
        records = [make_record(f"g{idx}", now=utc_now(), account_id=200 + idx) for idx in range(3)]
        for record in records:
            stack.store.records[record.id] = record
        real_schedule = stack.scheduler.schedule

        async def flaky(record):
            if record.id == "g1":
                raise RuntimeError("boom")
            return await real_schedule(record)

        stack.scheduler.schedule = AsyncMock(side_effect=flaky)

        summary = await BootstrapRecovery(stack.store, stack.scheduler).recover_all()

        assert summary.failed == 1
        assert summary.failed_ids == ["g1"]
        assert summary.scheduled == 2

        await stack.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_empty_store(self):
        stack = build_stack()
        summary = await BootstrapRecovery(stack.store, stack.scheduler).recover_all()
        assert summary.total == 0
