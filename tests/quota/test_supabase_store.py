"""
Test the Supabase quota store against a mocked client
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from quota_service.db.models import SubscriptionTier
from quota_service.db.supabase_client import SupabaseQuotaStore
from quota_service.exceptions import RecordNotFoundError, StoreUnavailableError

WINDOW = timedelta(hours=3)


@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def store(mock_client):
    return SupabaseQuotaStore(client=mock_client)


def _rpc_returns(mock_client, data):
    mock_client.rpc.return_value.execute.return_value = MagicMock(data=data)


class TestRpcOperations:
    """Mutations go through Postgres functions"""

    @pytest.mark.asyncio
    async def test_deduct_calls_function(self, store, mock_client, clock):
        _rpc_returns(mock_client, {"success": True, "remaining_gems": 45})

        result = await store.deduct_gems("u1", 5, clock(), WINDOW)

        assert result.success is True
        assert result.remaining_gems == 45
        mock_client.rpc.assert_called_once_with(
            "deduct_gems",
            {
                "p_user_id": "u1",
                "p_amount": 5,
                "p_now": clock().isoformat(),
                "p_window_seconds": 10800,
            },
        )

    @pytest.mark.asyncio
    async def test_list_payload_takes_first_row(self, store, mock_client, clock):
        _rpc_returns(mock_client, [{"success": False, "remaining_gems": 2}])

        result = await store.deduct_gems("u1", 5, clock(), WINDOW)

        assert result.success is False
        assert result.remaining_gems == 2

    @pytest.mark.asyncio
    async def test_empty_payload_means_no_row(self, store, mock_client, clock):
        _rpc_returns(mock_client, None)

        with pytest.raises(RecordNotFoundError):
            await store.deduct_gems("u1", 5, clock(), WINDOW)

    @pytest.mark.asyncio
    async def test_conditional_reset_flag_is_passed(self, store, mock_client, clock):
        next_reset = clock() + WINDOW
        _rpc_returns(mock_client, {"current_gems": 50, "next_reset_at": next_reset.isoformat()})

        result = await store.reset_gems("u1", clock(), WINDOW, only_if_elapsed=True)

        assert result.current_gems == 50
        assert result.next_reset_at == next_reset
        params = mock_client.rpc.call_args[0][1]
        assert params["p_only_if_elapsed"] is True

    @pytest.mark.asyncio
    async def test_track_tokens(self, store, mock_client, clock):
        _rpc_returns(
            mock_client,
            {"timeout_triggered": True, "current_tokens": 4200, "can_chat": False},
        )

        result = await store.add_tokens("u1", 1200, 4000, clock())

        assert result.timeout_triggered is True
        assert result.can_chat is False
        mock_client.rpc.assert_called_once_with(
            "track_tokens",
            {"p_user_id": "u1", "p_tokens": 1200, "p_limit": 4000, "p_now": clock().isoformat()},
        )

    @pytest.mark.asyncio
    async def test_purge_returns_count(self, store, mock_client):
        _rpc_returns(mock_client, 2)

        assert await store.purge_user("u1") == 2
        mock_client.rpc.assert_called_once_with("purge_user_quota", {"p_user_id": "u1"})


class TestTableOperations:
    """Reads and inserts use the table API"""

    @pytest.mark.asyncio
    async def test_get_gem_record(self, store, mock_client, clock):
        table = mock_client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[
                {
                    "user_id": "u1",
                    "current_gems": 12,
                    "max_gems": 200,
                    "subscription_tier": "pro",
                    "last_reset_at": clock().isoformat(),
                    "next_reset_at": (clock() + WINDOW).isoformat(),
                }
            ]
        )

        record = await store.get_gem_record("u1")

        assert record.current_gems == 12
        assert record.subscription_tier == SubscriptionTier.PRO
        mock_client.table.assert_called_with("user_gems")

    @pytest.mark.asyncio
    async def test_get_missing_gem_record(self, store, mock_client):
        table = mock_client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[])

        assert await store.get_gem_record("u1") is None

    @pytest.mark.asyncio
    async def test_initialize_ignores_existing_row(self, store, mock_client, clock):
        table = mock_client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[
                {
                    "user_id": "u1",
                    "current_gems": 7,
                    "max_gems": 50,
                    "subscription_tier": "basic",
                    "last_reset_at": clock().isoformat(),
                    "next_reset_at": (clock() + WINDOW).isoformat(),
                }
            ]
        )

        record = await store.initialize_gems("u1", SubscriptionTier.BASIC, 50, clock(), WINDOW)

        assert record.current_gems == 7
        _, kwargs = table.upsert.call_args
        assert kwargs == {"on_conflict": "user_id", "ignore_duplicates": True}

    @pytest.mark.asyncio
    async def test_subscription_upsert_keys_on_email(self, store, mock_client, clock):
        await store.upsert_subscription("u1", "a@example.com", True, "pro", None, clock())

        mock_client.table.assert_called_with("subscribers")
        args, kwargs = mock_client.table.return_value.upsert.call_args
        assert args[0]["subscription_tier"] == "pro"
        assert args[0]["subscription_end"] is None
        assert kwargs == {"on_conflict": "email"}


class TestStoreFailures:
    """Backend errors surface as StoreUnavailableError"""

    @pytest.mark.asyncio
    async def test_rpc_failure(self, store, mock_client, clock):
        mock_client.rpc.return_value.execute.side_effect = Exception("connection reset")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.deduct_gems("u1", 5, clock(), WINDOW)

        assert exc_info.value.status_code == 503
        assert exc_info.value.operation == "deduct_gems"

    @pytest.mark.asyncio
    async def test_read_failure(self, store, mock_client):
        mock_client.table.side_effect = Exception("timeout")

        with pytest.raises(StoreUnavailableError):
            await store.get_token_record("u1")
