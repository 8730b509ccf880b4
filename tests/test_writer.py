"""Tests for the TicketWriter write path."""

from datetime import datetime, timezone

import pytest

from ticket_mirror.tickets.domain import SLAMeasurement

from conftest import make_ticket


def _sla(sla_id: str = "s1", percentage: float = 40.0) -> SLAMeasurement:
    return SLAMeasurement(
        id=sla_id,
        sla_name="Resolution",
        stage="in_progress",
        business_percentage=percentage,
        has_breached=False,
        start_time=datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc),
    )


class TestFirstWrite:

    @pytest.mark.asyncio
    async def test_creates_version_one(self, writer, store):
        outcome = await writer.write(make_ticket())

        assert outcome.written is True
        assert outcome.created is True
        assert outcome.record.version == 1
        assert store.documents["t1"]["_version"] == 1
        assert store.documents["t1"]["_source"] == "remote"

    @pytest.mark.asyncio
    async def test_audits_every_field_as_create(self, writer, store):
        await writer.write(make_ticket())

        assert store.audit
        assert {e.change_type for e in store.audit} == {"create"}
        assert {e.sync_version for e in store.audit} == {1}
        assert "_version" not in {e.field for e in store.audit}

    @pytest.mark.asyncio
    async def test_policy_summary_without_measurements(self, writer, store):
        # P1 created Monday 09:00, six business hours before the fixed clock
        await writer.write(make_ticket(priority=1))

        summary = store.documents["t1"]["sla_summary"]
        assert summary["total_slas"] == 1
        assert summary["breached_slas"] == 1
        assert summary["worst_sla"]["business_percentage"] == 150.0

    @pytest.mark.asyncio
    async def test_tracks_sla_after_write(self, writer, sla_repository):
        await writer.write(make_ticket(priority=1))

        record = sla_repository.records["t1"]
        assert record.target_hours == 4
        assert record.breached is True


class TestRewrite:

    @pytest.mark.asyncio
    async def test_unchanged_ticket_is_not_written(self, writer, store):
        await writer.write(make_ticket())
        audit_size = len(store.audit)
        replace_calls = store.replace_calls

        outcome = await writer.write(make_ticket())

        assert outcome.written is False
        assert outcome.record.version == 1
        assert store.replace_calls == replace_calls
        assert len(store.audit) == audit_size

    @pytest.mark.asyncio
    async def test_changed_ticket_bumps_version_and_audits_diff(self, writer, store):
        await writer.write(make_ticket(state=2))
        store.audit.clear()

        outcome = await writer.write(make_ticket(state=3))

        assert outcome.written is True
        assert outcome.created is False
        assert outcome.record.version == 2
        assert [(e.field, e.change_type, e.old_value, e.new_value) for e in store.audit] == [
            ("state", "update", 2, 3)
        ]
        assert store.audit[0].sync_version == 2

    @pytest.mark.asyncio
    async def test_missing_measurements_keep_stored_slas(self, writer, store):
        await writer.write(make_ticket(state=2), [_sla()])
        await writer.write(make_ticket(state=3))

        assert [m["id"] for m in store.documents["t1"]["slas"]] == ["s1"]

    @pytest.mark.asyncio
    async def test_empty_measurements_clear_slas(self, writer, store):
        await writer.write(make_ticket(), [_sla()])
        outcome = await writer.write(make_ticket(), [])

        assert outcome.written is True
        assert store.documents["t1"]["slas"] == []

    @pytest.mark.asyncio
    async def test_sla_change_alone_is_written(self, writer, store):
        await writer.write(make_ticket(), [_sla(percentage=40.0)])
        outcome = await writer.write(make_ticket(), [_sla(percentage=60.0)])

        assert outcome.written is True
        assert outcome.record.version == 2
        assert store.documents["t1"]["sla_summary"]["worst_sla"]["business_percentage"] == 60.0


class TestConflictsAndFailures:

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, writer, store):
        store.conflicts_to_raise = 2

        outcome = await writer.write(make_ticket())

        assert outcome.written is True
        assert store.replace_calls == 3
        assert store.documents["t1"]["_version"] == 1

    @pytest.mark.asyncio
    async def test_persistent_conflict_gives_up_quietly(self, writer, store):
        store.conflicts_to_raise = 5

        outcome = await writer.write(make_ticket())

        assert outcome.written is False
        assert store.replace_calls == writer.MAX_CONFLICT_ATTEMPTS
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_stale_version_is_not_overwritten(self, writer, store):
        await writer.write(make_ticket(state=2))
        # Another writer got there first
        store.documents["t1"]["_version"] = 5
        store.documents["t1"]["state"] = 7

        outcome = await writer.write(make_ticket(state=3))

        assert outcome.written is True
        assert outcome.record.version == 6

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_write(self, writer, store):
        store.fail_audit = True

        outcome = await writer.write(make_ticket())

        assert outcome.written is True
        assert "t1" in store.documents
        assert store.audit == []
