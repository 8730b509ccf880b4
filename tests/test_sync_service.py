"""Tests for TicketSyncService."""

import pytest

from ticket_mirror.core.exceptions import InvalidTableException
from ticket_mirror.tickets.application.services import TicketSyncService

from conftest import NOW, raw_record


@pytest.fixture
def sync_service(remote, writer, clock):
    return TicketSyncService(remote, writer, page_size=2, delta_hours=3, clock=clock)


class TestSyncTable:

    @pytest.mark.asyncio
    async def test_pages_through_table(self, sync_service, remote, store):
        for index in range(5):
            remote.add("incident", raw_record(f"r{index}"))

        result = await sync_service.sync_table("incident", incremental=False)

        assert result.processed == 5
        assert result.created == 5
        assert remote.fetch_by_filter_calls == 3
        assert len(store.documents) == 5

    @pytest.mark.asyncio
    async def test_second_sync_is_unchanged(self, sync_service, remote):
        remote.add("incident", raw_record("r1"))
        await sync_service.sync_table("incident")

        remote.records["incident"].append(raw_record("r2"))
        remote.records["incident"][0] = raw_record("r1", state="3")
        result = await sync_service.sync_table("incident")

        assert (result.created, result.updated, result.unchanged) == (1, 1, 0)

        result = await sync_service.sync_table("incident")
        assert result.unchanged == 2

    @pytest.mark.asyncio
    async def test_incremental_query_window(self, sync_service, remote):
        await sync_service.sync_table("incident", incremental=True)

        assert remote.last_query == "sys_updated_on>=2024-01-08 12:00:00^ORDERBYsys_updated_on"

    @pytest.mark.asyncio
    async def test_max_records(self, sync_service, remote):
        for index in range(5):
            remote.add("incident", raw_record(f"r{index}"))

        result = await sync_service.sync_table("incident", max_records=3)

        assert result.processed == 3

    @pytest.mark.asyncio
    async def test_bad_records_are_counted(self, sync_service, remote):
        remote.add("incident", raw_record("r1"))
        remote.add("incident", {"sys_id": "broken"})

        result = await sync_service.sync_table("incident")

        assert result.processed == 1
        assert result.errors == 1
        assert result.error_details[0]["sys_id"] == "broken"
        assert result.error_details[0]["type"] == "ValidationException"

    @pytest.mark.asyncio
    async def test_remote_failure_stops_sync(self, sync_service, remote):
        remote.fail = True

        result = await sync_service.sync_table("incident")

        assert result.processed == 0
        assert result.errors == 1
        assert result.started_at == NOW

    @pytest.mark.asyncio
    async def test_unknown_table(self, sync_service):
        with pytest.raises(InvalidTableException):
            await sync_service.sync_table("problem")


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_degrades_with_errors(self, sync_service, remote):
        assert sync_service.health_status() == "healthy"

        remote.add("incident", raw_record("r1"))
        remote.add("incident", {"sys_id": "broken"})
        await sync_service.sync_table("incident")

        assert sync_service.health_status() == "degraded"

    @pytest.mark.asyncio
    async def test_health_error_when_everything_fails(self, sync_service, remote):
        remote.fail = True
        await sync_service.sync_table("incident")

        assert sync_service.health_status() == "error"

    @pytest.mark.asyncio
    async def test_statistics(self, sync_service, remote):
        remote.add("sc_task", raw_record("r1"))
        await sync_service.sync_tables(["sc_task", "incident"])

        stats = sync_service.statistics()

        assert stats["total_syncs"] == 2
        assert stats["total_processed"] == 1
        assert stats["tables"]["sc_task"]["created"] == 1
