"""Tests for WarmupScheduler."""

import asyncio
import itertools
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from ticket_mirror.core.exceptions import (
    InvalidTableException,
    TicketNotFoundException,
    UpstreamUnavailableException,
    ValidationException,
)
from ticket_mirror.warmup.application import WarmupScheduler

from conftest import NOW, FakeRemoteSource, raw_record

SMALL_TIERS = {
    "critical": (2, 2),
    "high": (2, 1),
    "medium": (2, 1),
    "low": (2, 1),
}


def ticking_clock():
    counter = itertools.count()
    return lambda: NOW + timedelta(seconds=next(counter))


@pytest.fixture
def fake_resolver():
    resolver = MagicMock()
    resolver.calls = []

    async def get_by_id(table, ticket_id, timeout=None):
        resolver.calls.append(ticket_id)
        return MagicMock()

    resolver.get_by_id = AsyncMock(side_effect=get_by_id)
    return resolver


@pytest.fixture
def scheduler(fake_resolver):
    return WarmupScheduler(fake_resolver, chunk_delay_seconds=0, clock=ticking_clock())


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_duplicate_is_ignored(self, scheduler):
        assert await scheduler.enqueue("a", "incident", "low") is True
        assert await scheduler.enqueue("a", "incident", "low") is False

        stats = await scheduler.stats()
        assert stats["queue_size"] == 1
        assert stats["enqueued"] == 1
        assert stats["deduplicated"] == 1

    @pytest.mark.asyncio
    async def test_same_id_in_other_table_is_distinct(self, scheduler):
        assert await scheduler.enqueue("a", "incident") is True
        assert await scheduler.enqueue("a", "sc_task") is True

    @pytest.mark.asyncio
    async def test_duplicate_with_higher_priority_upgrades(self, scheduler):
        await scheduler.enqueue("a", "incident", "low")
        await scheduler.enqueue("a", "incident", "critical")

        [task] = await scheduler.queue_snapshot()
        assert task.priority == "critical"

    @pytest.mark.asyncio
    async def test_duplicate_with_lower_priority_keeps_tier(self, scheduler):
        await scheduler.enqueue("a", "incident", "high")
        await scheduler.enqueue("a", "incident", "low")

        [task] = await scheduler.queue_snapshot()
        assert task.priority == "high"

    @pytest.mark.asyncio
    async def test_invalid_input(self, scheduler):
        with pytest.raises(InvalidTableException):
            await scheduler.enqueue("a", "problem")
        with pytest.raises(ValidationException):
            await scheduler.enqueue("a", "incident", "urgent")
        with pytest.raises(ValidationException):
            await scheduler.enqueue("", "incident")


class TestDrain:

    @pytest.mark.asyncio
    async def test_tier_order(self, scheduler, fake_resolver):
        await scheduler.enqueue("B", "incident", "low")
        await scheduler.enqueue("C", "incident", "critical")
        await scheduler.enqueue("A", "incident", "medium")

        result = await scheduler.drain()

        assert [ticket_id for ticket_id, _ in result.order] == ["C", "A", "B"]
        assert fake_resolver.calls == ["C", "A", "B"]
        assert result.processed == 3
        assert result.hits == 3

    @pytest.mark.asyncio
    async def test_fifo_within_tier(self, scheduler, fake_resolver):
        for ticket_id in ("x1", "x2", "x3"):
            await scheduler.enqueue(ticket_id, "incident", "medium")

        await scheduler.drain()

        assert fake_resolver.calls == ["x1", "x2", "x3"]

    @pytest.mark.asyncio
    async def test_empty_queue(self, scheduler, fake_resolver):
        result = await scheduler.drain()

        assert result.processed == 0
        assert result.skipped is False
        fake_resolver.get_by_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_misses_are_counted(self, scheduler, fake_resolver):
        async def get_by_id(table, ticket_id, timeout=None):
            if ticket_id == "gone":
                raise TicketNotFoundException(table, ticket_id)
            if ticket_id == "down":
                raise UpstreamUnavailableException("connection refused")
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        for ticket_id in ("ok", "gone", "down"):
            await scheduler.enqueue(ticket_id, "incident")

        result = await scheduler.drain()
        stats = await scheduler.stats()

        assert result.hits == 1
        assert result.misses == 2
        assert stats["hit_ratio"] == 0.3333
        assert stats["miss_ratio"] == 0.6667
        assert stats["queue_size"] == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_a_miss_and_drain_continues(self, scheduler, fake_resolver):
        calls = []

        async def get_by_id(table, ticket_id, timeout=None):
            calls.append(ticket_id)
            if ticket_id == "bad":
                raise ValueError("unexpected payload")
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        for ticket_id in ("bad", "ok1", "ok2"):
            await scheduler.enqueue(ticket_id, "incident", "critical")

        result = await scheduler.drain()
        stats = await scheduler.stats()

        assert sorted(calls) == ["bad", "ok1", "ok2"]
        assert result.processed == 3
        assert result.hits == 2
        assert result.misses == 1
        assert stats["queue_size"] == 0
        assert scheduler.is_draining is False

    @pytest.mark.asyncio
    async def test_batch_size_leftover_waits_for_next_drain(self, fake_resolver):
        scheduler = WarmupScheduler(
            fake_resolver, chunk_delay_seconds=0, tiers=SMALL_TIERS, clock=ticking_clock()
        )
        for ticket_id in ("h1", "h2", "h3"):
            await scheduler.enqueue(ticket_id, "incident", "high")

        first = await scheduler.drain()
        second = await scheduler.drain()

        assert first.processed == 2
        assert first.requeued == 1
        assert [ticket_id for ticket_id, _ in second.order] == ["h3"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_per_tier(self, fake_resolver):
        running = 0
        peak = 0

        async def get_by_id(table, ticket_id, timeout=None):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        scheduler = WarmupScheduler(fake_resolver, chunk_delay_seconds=0, clock=ticking_clock())
        for index in range(6):
            await scheduler.enqueue(f"c{index}", "incident", "critical")

        result = await scheduler.drain()

        assert result.processed == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_cancel_requeues_unstarted_chunks(self, fake_resolver):
        cancel = asyncio.Event()

        async def get_by_id(table, ticket_id, timeout=None):
            cancel.set()
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        scheduler = WarmupScheduler(fake_resolver, chunk_delay_seconds=0, clock=ticking_clock())
        for index in range(4):
            await scheduler.enqueue(f"c{index}", "incident", "critical")

        result = await scheduler.drain(cancel_event=cancel)

        assert result.cancelled is True
        assert result.processed == 2
        assert result.requeued == 2
        assert [t.ticket_id for t in await scheduler.queue_snapshot()] == ["c2", "c3"]

    @pytest.mark.asyncio
    async def test_zero_timeout_processes_nothing(self, scheduler, fake_resolver):
        await scheduler.enqueue("a", "incident")

        result = await scheduler.drain(timeout=0)

        assert result.cancelled is True
        assert result.processed == 0
        assert len(await scheduler.queue_snapshot()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_drain_is_skipped(self, scheduler, fake_resolver):
        release = asyncio.Event()

        async def get_by_id(table, ticket_id, timeout=None):
            await release.wait()
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        await scheduler.enqueue("a", "incident")

        first = asyncio.create_task(scheduler.drain())
        await asyncio.sleep(0)
        assert scheduler.is_draining is True

        second = await scheduler.drain()
        release.set()
        first_result = await first

        assert second.skipped is True
        assert first_result.processed == 1
        assert scheduler.is_draining is False

    @pytest.mark.asyncio
    async def test_enqueue_during_drain_waits_for_next(self, scheduler, fake_resolver):
        async def get_by_id(table, ticket_id, timeout=None):
            fake_resolver.calls.append(ticket_id)
            if ticket_id == "a":
                await scheduler.enqueue("late", "incident", "critical")
            return MagicMock()

        fake_resolver.get_by_id.side_effect = get_by_id
        await scheduler.enqueue("a", "incident")

        first = await scheduler.drain()
        second = await scheduler.drain()

        assert [ticket_id for ticket_id, _ in first.order] == ["a"]
        assert [ticket_id for ticket_id, _ in second.order] == ["late"]


class TestChangeNotifications:

    def test_priority_from_change(self):
        assert WarmupScheduler.priority_from_change({"priority": "1", "action": "updated"}) == "critical"
        assert WarmupScheduler.priority_from_change({"state": "2", "action": "updated"}) == "high"
        assert WarmupScheduler.priority_from_change({"action": "created"}) == "medium"
        assert WarmupScheduler.priority_from_change({"action": "updated"}) == "low"

    @pytest.mark.asyncio
    async def test_handle_change_enqueues(self, scheduler):
        queued = await scheduler.handle_change(
            {"ticket_id": "abc", "table": "incident", "action": "created", "priority": "1"}
        )

        assert queued is True
        [task] = await scheduler.queue_snapshot()
        assert task.priority == "critical"

    @pytest.mark.asyncio
    async def test_malformed_change_is_rejected(self, scheduler):
        with pytest.raises(ValidationException):
            await scheduler.handle_change({"table": "incident", "action": "created"})
        with pytest.raises(ValidationException):
            await scheduler.handle_change({"ticket_id": "a", "table": "incident", "action": "deleted"})


class TestQueryWarmup:

    @pytest.mark.asyncio
    async def test_queues_matching_tickets(self, fake_resolver):
        remote = FakeRemoteSource()
        for sys_id in ("r1", "r2"):
            remote.add("incident", raw_record(sys_id))
        scheduler = WarmupScheduler(fake_resolver, remote=remote, clock=ticking_clock())

        queued = await scheduler.warmup_from_query("incident", "priority=1^state!=7")

        assert queued == 2
        assert remote.last_query == "priority=1^state!=7"
        assert {t.priority for t in await scheduler.queue_snapshot()} == {"high"}

    @pytest.mark.asyncio
    async def test_requires_remote(self, scheduler):
        with pytest.raises(ValidationException):
            await scheduler.warmup_from_query("incident", "priority=1")
