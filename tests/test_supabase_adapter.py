"""Tests for the Supabase adapter, with the async client mocked out."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from postgrest.exceptions import APIError

from laborhire.platform import BackendError, Binding, and_, eq, in_, is_null, or_
from laborhire.platform.supabase import SupabaseBackend, apply_filters, parse_change_payload


def _query(data=None, count=None, error=None):
    """A chainable query-builder mock whose execute() returns ``data``."""
    query = MagicMock()
    for method in ("select", "insert", "update", "eq", "is_", "in_", "or_", "order", "limit"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data, count=count))
    return query


def _backend(query):
    client = MagicMock()
    client.table.return_value = query
    return SupabaseBackend(client), client


class TestApplyFilters:
    def test_each_filter_kind(self):
        query = _query()

        apply_filters(
            query,
            [
                eq("receiver_id", "p1"),
                is_null("deleted_at"),
                in_("id", ["a", "b"]),
                or_(eq("payer_id", "p1"), eq("payee_id", "p1")),
                and_(eq("a", 1), eq("b", 2)),
            ],
        )

        query.eq.assert_called_once_with("receiver_id", "p1")
        query.is_.assert_called_once_with("deleted_at", "null")
        query.in_.assert_called_once_with("id", ["a", "b"])
        assert [c.args[0] for c in query.or_.call_args_list] == [
            "payer_id.eq.p1,payee_id.eq.p1",
            "and(a.eq.1,b.eq.2)",
        ]


class TestTables:
    @pytest.mark.asyncio
    async def test_select_builds_query(self):
        query = _query(data=[{"id": "j1"}])
        backend, client = _backend(query)

        rows = await backend.select("jobs", [eq("status", "open")], order="created_at", desc=True, limit=5)

        assert rows == [{"id": "j1"}]
        client.table.assert_called_once_with("jobs")
        query.select.assert_called_once_with("*")
        query.order.assert_called_once_with("created_at", desc=True)
        query.limit.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_select_empty(self):
        backend, _ = _backend(_query(data=None))
        assert await backend.select("jobs") == []

    @pytest.mark.asyncio
    async def test_api_error_becomes_backend_error(self):
        error = APIError(
            {
                "message": 'duplicate key value violates unique constraint "unique_job_worker_payment"',
                "code": "23505",
                "details": "Key already exists.",
                "hint": None,
            }
        )
        backend, _ = _backend(_query(error=error))

        with pytest.raises(BackendError) as exc_info:
            await backend.insert("payments", {"amount": "1"})

        assert exc_info.value.is_unique_violation
        assert "unique_job_worker_payment" in exc_info.value.message
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_insert_without_row(self):
        backend, _ = _backend(_query(data=[]))
        with pytest.raises(BackendError, match="returned no row"):
            await backend.insert("jobs", {"title": "x"})

    @pytest.mark.asyncio
    async def test_count_uses_head_request(self):
        query = _query(count=7)
        backend, _ = _backend(query)

        assert await backend.count("messages", [eq("is_read", False)]) == 7
        query.select.assert_called_once_with("*", count="exact", head=True)

    @pytest.mark.asyncio
    async def test_update_returns_rows(self):
        query = _query(data=[{"id": "m1", "is_read": True}])
        backend, _ = _backend(query)

        rows = await backend.update("messages", {"is_read": True}, [eq("id", "m1")])

        assert rows == [{"id": "m1", "is_read": True}]
        query.update.assert_called_once_with({"is_read": True})


class TestRpcAndFunctions:
    @pytest.mark.asyncio
    async def test_rpc(self):
        client = MagicMock()
        client.rpc.return_value.execute = AsyncMock(return_value=MagicMock(data=4.33))
        backend = SupabaseBackend(client)

        assert await backend.rpc("calculate_average_rating", {"user_profile_id": "p"}) == 4.33
        client.rpc.assert_called_once_with("calculate_average_rating", {"user_profile_id": "p"})

    @pytest.mark.asyncio
    async def test_invoke_decodes_bytes(self):
        client = MagicMock()
        client.functions.invoke = AsyncMock(return_value=b'{"success": true}')
        backend = SupabaseBackend(client)

        result = await backend.invoke_function("admin-reset-password", {"targetUserId": "p"})

        assert result == {"success": True}
        client.functions.invoke.assert_awaited_once_with(
            "admin-reset-password", invoke_options={"body": {"targetUserId": "p"}}
        )

    @pytest.mark.asyncio
    async def test_invoke_failure(self):
        client = MagicMock()
        client.functions.invoke = AsyncMock(side_effect=RuntimeError("403 Forbidden"))
        backend = SupabaseBackend(client)

        with pytest.raises(BackendError, match="admin-reset-password failed"):
            await backend.invoke_function("admin-reset-password", {})


class TestAuth:
    @pytest.mark.asyncio
    async def test_sign_in_maps_session(self):
        client = MagicMock()
        raw_user = MagicMock(id="u1", email="a@example.com", user_metadata={"role": "worker"})
        raw_session = MagicMock(access_token="tok", refresh_token="ref", expires_at=123, user=raw_user)
        client.auth.sign_in_with_password = AsyncMock(return_value=MagicMock(session=raw_session))
        backend = SupabaseBackend(client)

        session = await backend.sign_in("a@example.com", "pw")

        assert session.access_token == "tok"
        assert session.user.id == "u1"
        assert session.user.metadata == {"role": "worker"}

    @pytest.mark.asyncio
    async def test_sign_up_without_session(self):
        client = MagicMock()
        client.auth.sign_up = AsyncMock(return_value=MagicMock(session=None))
        backend = SupabaseBackend(client)

        assert await backend.sign_up("a@example.com", "pw", {"role": "worker"}, redirect_to="https://x") is None
        sent = client.auth.sign_up.await_args.args[0]
        assert sent["options"] == {"data": {"role": "worker"}, "email_redirect_to": "https://x"}

    @pytest.mark.asyncio
    async def test_auth_errors_wrapped(self):
        client = MagicMock()
        client.auth.sign_in_with_password = AsyncMock(side_effect=RuntimeError("Invalid login credentials"))
        backend = SupabaseBackend(client)

        with pytest.raises(BackendError, match="Invalid login credentials"):
            await backend.sign_in("a@example.com", "bad")


class TestRealtime:
    def test_payload_with_data_envelope(self):
        event = parse_change_payload(
            "messages",
            {
                "data": {
                    "table": "messages",
                    "type": "INSERT",
                    "record": {"id": "m1"},
                    "old_record": None,
                    "commit_timestamp": "2026-03-01T10:00:00Z",
                }
            },
        )

        assert event.event_type == "INSERT"
        assert event.new == {"id": "m1"}
        assert event.old == {}
        assert event.commit_timestamp.year == 2026

    def test_flat_payload(self):
        event = parse_change_payload(
            "wallets", {"eventType": "UPDATE", "new": {"balance": "10"}, "old": {"balance": "0"}}
        )

        assert event.table == "wallets"
        assert event.event_type == "UPDATE"
        assert event.old == {"balance": "0"}

    @pytest.mark.asyncio
    async def test_subscribe_registers_bindings(self):
        client = MagicMock()
        channel = MagicMock()
        channel.subscribe = AsyncMock()
        client.channel.return_value = channel
        client.remove_channel = AsyncMock()
        backend = SupabaseBackend(client)
        events = []

        subscription = await backend.subscribe(
            "inbox", [Binding("messages", "INSERT", eq("receiver_id", "p1")), Binding("conversations")], events.append
        )

        first, second = channel.on_postgres_changes.call_args_list
        assert first.args[0] == "INSERT"
        assert first.kwargs == {"schema": "public", "table": "messages", "filter": "receiver_id=eq.p1"}
        assert second.args[0] == "*"
        assert "filter" not in second.kwargs

        first.args[1]({"data": {"type": "INSERT", "record": {"id": "m1"}}})
        assert events[0].table == "messages"
        assert events[0].new == {"id": "m1"}

        await backend.unsubscribe(subscription)
        client.remove_channel.assert_awaited_once_with(channel)
