"""
Test the in-memory quota store
"""

import asyncio
import gc
from datetime import timedelta

import pytest

from quota_service.db.models import SubscriptionTier
from quota_service.exceptions import RecordNotFoundError

WINDOW = timedelta(hours=3)


class TestGemRows:
    """Gem row lifecycle"""

    @pytest.mark.asyncio
    async def test_initialize_does_not_overwrite(self, memory_store, clock):
        await memory_store.initialize_gems("u1", SubscriptionTier.BASIC, 50, clock(), WINDOW)
        await memory_store.deduct_gems("u1", 10, clock(), WINDOW)

        record = await memory_store.initialize_gems("u1", SubscriptionTier.PRO, 200, clock(), WINDOW)

        assert record.current_gems == 40
        assert record.max_gems == 50

    @pytest.mark.asyncio
    async def test_deduct_without_row(self, memory_store, clock):
        with pytest.raises(RecordNotFoundError):
            await memory_store.deduct_gems("missing", 1, clock(), WINDOW)

    @pytest.mark.asyncio
    async def test_set_tier_keeps_balance(self, memory_store, clock):
        await memory_store.initialize_gems("u1", SubscriptionTier.BASIC, 50, clock(), WINDOW)
        await memory_store.deduct_gems("u1", 20, clock(), WINDOW)

        record = await memory_store.set_tier("u1", SubscriptionTier.ENTERPRISE, 500)

        assert record.subscription_tier == SubscriptionTier.ENTERPRISE
        assert record.max_gems == 500
        assert record.current_gems == 30

    @pytest.mark.asyncio
    async def test_set_tier_without_row(self, memory_store):
        assert await memory_store.set_tier("missing", SubscriptionTier.PRO, 200) is None

    @pytest.mark.asyncio
    async def test_concurrent_debits_serialize(self, memory_store, clock):
        await memory_store.initialize_gems("u1", SubscriptionTier.BASIC, 50, clock(), WINDOW)

        results = await asyncio.gather(
            *[memory_store.deduct_gems("u1", 10, clock(), WINDOW) for _ in range(8)]
        )

        assert sum(r.success for r in results) == 5
        assert all(r.remaining_gems == 0 for r in results if not r.success)
        assert memory_store.gems["u1"].current_gems == 0


class TestTokenRows:
    """Token row lifecycle"""

    @pytest.mark.asyncio
    async def test_clear_respects_reached_before(self, memory_store, clock):
        await memory_store.initialize_tokens("u1")
        await memory_store.add_tokens("u1", 5000, 4000, clock())

        record = await memory_store.clear_token_timeout("u1", reached_before=clock() - timedelta(minutes=1))
        assert record.can_chat is False

        record = await memory_store.clear_token_timeout("u1", reached_before=clock())
        assert record.can_chat is True
        assert record.current_tokens == 0

    @pytest.mark.asyncio
    async def test_unconditional_clear(self, memory_store, clock):
        await memory_store.initialize_tokens("u1")
        await memory_store.add_tokens("u1", 5000, 4000, clock())

        record = await memory_store.clear_token_timeout("u1")

        assert record.can_chat is True
        assert record.limit_reached_at is None

    @pytest.mark.asyncio
    async def test_add_without_row(self, memory_store, clock):
        with pytest.raises(RecordNotFoundError):
            await memory_store.add_tokens("missing", 1, 4000, clock())


class TestAccountRows:
    """Purge and subscription rows"""

    @pytest.mark.asyncio
    async def test_purge_removes_both_rows(self, memory_store, clock):
        await memory_store.initialize_gems("u1", SubscriptionTier.BASIC, 50, clock(), WINDOW)
        await memory_store.initialize_tokens("u1")

        assert await memory_store.purge_user("u1") == 2
        assert await memory_store.get_gem_record("u1") is None
        assert await memory_store.purge_user("u1") == 0

    @pytest.mark.asyncio
    async def test_alpha_tester_lookup_ignores_case(self, memory_store):
        memory_store.alpha_testers["tester@example.com"] = True

        assert await memory_store.is_alpha_tester("Tester@Example.com") is True
        assert await memory_store.is_alpha_tester("other@example.com") is False

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self, memory_store, clock):
        for user_id in ("u1", "u2", "u3"):
            await memory_store.initialize_gems(user_id, SubscriptionTier.BASIC, 50, clock(), WINDOW)
            await memory_store.deduct_gems(user_id, 1, clock(), WINDOW)
        await memory_store.purge_user("u1")
        gc.collect()

        assert len(memory_store._locks) == 0
