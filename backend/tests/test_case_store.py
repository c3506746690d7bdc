"""
Unit tests for SupabaseCaseStore and the realtime payload conversion.

The Supabase client is a MagicMock whose terminal execute() calls are
AsyncMocks. No real DB calls.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from app.models.notifications import ChangeType
from app.services.case_store import SupabaseCaseStore, payload_to_change


def _client():
    client = MagicMock()
    client.remove_channel = AsyncMock()
    return client


def _select_chain(client, data):
    """Wire table().select().eq().limit().execute() to return data."""
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    chain.execute = AsyncMock(return_value=Mock(data=data))
    return chain


class TestPayloadToChange:

    def test_wire_update_payload(self):
        change = payload_to_change({
            "data": {
                "type": "UPDATE",
                "record": {"id": "c1", "case_status": "case_approved"},
                "old_record": {"id": "c1", "case_status": "approval_pending"},
            }
        })
        assert change.type == ChangeType.MODIFIED
        assert change.case_id == "c1"
        assert change.data["case_status"] == "case_approved"
        assert change.previous["case_status"] == "approval_pending"

    def test_flattened_client_payload(self):
        change = payload_to_change({"eventType": "INSERT", "new": {"id": 7}, "old": {}})
        assert change.type == ChangeType.ADDED
        assert change.case_id == "7"
        assert change.previous is None

    def test_delete_uses_old_record_id(self):
        change = payload_to_change({"eventType": "DELETE", "new": {}, "old": {"id": "c9"}})
        assert change.type == ChangeType.REMOVED
        assert change.case_id == "c9"

    def test_unknown_event_ignored(self):
        assert payload_to_change({"eventType": "TRUNCATE", "new": {"id": "c1"}}) is None

    def test_missing_id_ignored(self):
        assert payload_to_change({"eventType": "UPDATE", "new": {"case_status": "x"}}) is None


class TestCaseRows:

    @pytest.mark.asyncio
    async def test_get_case_returns_first_row(self):
        client = _client()
        _select_chain(client, [{"id": "c1", "case_status": "case_approved"}])

        row = await SupabaseCaseStore(client).get_case("c1")

        assert row == {"id": "c1", "case_status": "case_approved"}
        client.table.assert_called_with("cases")
        client.table.return_value.select.return_value.eq.assert_called_with("id", "c1")

    @pytest.mark.asyncio
    async def test_get_case_missing(self):
        client = _client()
        _select_chain(client, [])
        assert await SupabaseCaseStore(client).get_case("nope") is None

    @pytest.mark.asyncio
    async def test_cases_table_from_env(self, monkeypatch):
        monkeypatch.setenv("CASES_TABLE", "tickets")
        assert SupabaseCaseStore(_client()).cases_table == "tickets"

    @pytest.mark.asyncio
    async def test_set_case_merge_upserts_json_row(self):
        client = _client()
        client.table.return_value.upsert.return_value.execute = AsyncMock()
        stamp = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)

        await SupabaseCaseStore(client).set_case("c1", {"status": "extracted", "created_at": stamp})

        row = client.table.return_value.upsert.call_args[0][0]
        assert row["id"] == "c1"
        assert row["status"] == "extracted"
        assert isinstance(row["created_at"], str)
        assert row["created_at"].startswith("2026-01-05T10:00:00")

    @pytest.mark.asyncio
    async def test_set_case_replace_deletes_then_inserts(self):
        client = _client()
        table = client.table.return_value
        table.delete.return_value.eq.return_value.execute = AsyncMock()
        table.insert.return_value.execute = AsyncMock()

        await SupabaseCaseStore(client).set_case("c1", {"status": "completed"}, merge=False)

        table.delete.return_value.eq.assert_called_once_with("id", "c1")
        table.insert.assert_called_once_with({"status": "completed", "id": "c1"})
        table.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_case(self):
        client = _client()
        chain = client.table.return_value.update.return_value.eq.return_value
        chain.execute = AsyncMock()

        await SupabaseCaseStore(client).update_case("c1", {"payment_status": "paid"})

        client.table.return_value.update.assert_called_once_with({"payment_status": "paid"})
        client.table.return_value.update.return_value.eq.assert_called_once_with("id", "c1")
        chain.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ping_propagates_errors(self):
        client = _client()
        client.table.return_value.select.return_value.limit.return_value.execute = AsyncMock(
            side_effect=ConnectionError("unreachable")
        )
        with pytest.raises(ConnectionError):
            await SupabaseCaseStore(client).ping()


class TestRecords:

    @pytest.mark.asyncio
    async def test_add_record_returns_table_id(self):
        client = _client()
        client.table.return_value.insert.return_value.execute = AsyncMock(return_value=Mock(data=[{"id": 12}]))

        record_id = await SupabaseCaseStore(client).add_record("audit-logs", {"type": "status_change"})

        assert record_id == 12
        client.table.assert_called_with("audit-logs")

    @pytest.mark.asyncio
    async def test_add_record_falls_back_to_own_id(self):
        client = _client()
        client.table.return_value.insert.return_value.execute = AsyncMock(return_value=Mock(data=[]))

        record_id = await SupabaseCaseStore(client).add_record("admin_alerts", {"id": "alert_1"})

        assert record_id == "alert_1"

    @pytest.mark.asyncio
    async def test_get_record(self):
        client = _client()
        _select_chain(client, [{"id": "alert_1", "notes": []}])

        assert (await SupabaseCaseStore(client).get_record("admin_alerts", "alert_1"))["id"] == "alert_1"


class TestChangeFeed:

    @pytest.mark.asyncio
    async def test_subscribe_converts_payloads_to_batches(self):
        client = _client()
        channel = client.channel.return_value
        channel.subscribe = AsyncMock()
        batches, errors = [], []

        unsubscribe = await SupabaseCaseStore(client).subscribe(batches.append, errors.append)

        kwargs = channel.on_postgres_changes.call_args.kwargs
        assert kwargs["table"] == "cases"
        assert kwargs["schema"] == "public"
        kwargs["callback"]({"eventType": "UPDATE", "new": {"id": "c1"}, "old": {"id": "c1"}})
        assert len(batches) == 1
        assert batches[0][0].case_id == "c1"

        await unsubscribe()
        client.remove_channel.assert_awaited_once_with(channel)

    @pytest.mark.asyncio
    async def test_channel_failure_reports_error(self):
        client = _client()
        channel = client.channel.return_value
        channel.subscribe = AsyncMock()
        errors = []

        await SupabaseCaseStore(client).subscribe(lambda batch: None, errors.append)

        on_status = channel.subscribe.call_args[0][0]
        on_status("SUBSCRIBED")
        assert errors == []
        on_status("CHANNEL_ERROR")
        assert len(errors) == 1
        assert "CHANNEL_ERROR" in str(errors[0])
