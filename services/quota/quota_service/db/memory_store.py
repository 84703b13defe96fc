"""
ABOUTME: In-process quota store for local development and tests
ABOUTME: Serializes all mutations for a user behind one asyncio.Lock
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from quota_service.db.models import (
    DeductResult,
    GemRecord,
    ResetResult,
    SubscriptionTier,
    TokenRecord,
    TrackResult,
)
from quota_service.db.store import QuotaStore
from quota_service.exceptions import RecordNotFoundError


class InMemoryQuotaStore(QuotaStore):
    """
    Dict-backed store; only valid inside a single process.

    Records are stored as immutable pydantic models and replaced whole
    under the user's lock, so readers never see a half-applied update.
    """

    def __init__(self):
        self.gems: Dict[str, GemRecord] = {}
        self.tokens: Dict[str, TokenRecord] = {}
        self.alpha_testers: Dict[str, bool] = {}
        self.subscribers: Dict[str, dict] = {}
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, kind: str, user_id: str) -> asyncio.Lock:
        key = (kind, user_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # Gem Operations

    async def get_gem_record(self, user_id: str) -> Optional[GemRecord]:
        return self.gems.get(user_id)

    async def initialize_gems(
        self, user_id: str, tier: SubscriptionTier, max_gems: int, now: datetime, window: timedelta
    ) -> GemRecord:
        async with self._lock("gem", user_id):
            if user_id not in self.gems:
                self.gems[user_id] = GemRecord(
                    user_id=user_id,
                    current_gems=max_gems,
                    max_gems=max_gems,
                    subscription_tier=tier,
                    last_reset_at=now,
                    next_reset_at=now + window,
                )
            return self.gems[user_id]

    async def deduct_gems(
        self, user_id: str, amount: int, now: datetime, window: timedelta
    ) -> DeductResult:
        async with self._lock("gem", user_id):
            record = self._require_gems(user_id)

            if now >= record.next_reset_at:
                record = self._refilled(record, now, window)
                self.gems[user_id] = record

            if record.current_gems < amount:
                return DeductResult(success=False, remaining_gems=record.current_gems)

            record = record.model_copy(update={"current_gems": record.current_gems - amount})
            self.gems[user_id] = record
            return DeductResult(success=True, remaining_gems=record.current_gems)

    async def reset_gems(
        self, user_id: str, now: datetime, window: timedelta, only_if_elapsed: bool = False
    ) -> ResetResult:
        async with self._lock("gem", user_id):
            record = self._require_gems(user_id)

            if not only_if_elapsed or now >= record.next_reset_at:
                record = self._refilled(record, now, window)
                self.gems[user_id] = record

            return ResetResult(
                success=True,
                current_gems=record.current_gems,
                next_reset_at=record.next_reset_at,
            )

    async def set_tier(
        self, user_id: str, tier: SubscriptionTier, max_gems: int
    ) -> Optional[GemRecord]:
        async with self._lock("gem", user_id):
            record = self.gems.get(user_id)
            if record is None:
                return None
            record = record.model_copy(update={"subscription_tier": tier, "max_gems": max_gems})
            self.gems[user_id] = record
            return record

    # Token Operations

    async def get_token_record(self, user_id: str) -> Optional[TokenRecord]:
        return self.tokens.get(user_id)

    async def initialize_tokens(self, user_id: str) -> TokenRecord:
        async with self._lock("token", user_id):
            if user_id not in self.tokens:
                self.tokens[user_id] = TokenRecord(user_id=user_id)
            return self.tokens[user_id]

    async def add_tokens(
        self, user_id: str, tokens: int, limit: int, now: datetime
    ) -> TrackResult:
        async with self._lock("token", user_id):
            record = self.tokens.get(user_id)
            if record is None:
                raise RecordNotFoundError(user_id, "token")

            new_total = record.current_tokens + tokens
            timeout_triggered = new_total >= limit and record.can_chat

            update = {"current_tokens": new_total}
            if timeout_triggered:
                update.update({"can_chat": False, "limit_reached_at": now})

            record = record.model_copy(update=update)
            self.tokens[user_id] = record

            return TrackResult(
                success=True,
                timeout_triggered=timeout_triggered,
                current_tokens=record.current_tokens,
                can_chat=record.can_chat,
            )

    async def clear_token_timeout(
        self, user_id: str, reached_before: Optional[datetime] = None
    ) -> TokenRecord:
        async with self._lock("token", user_id):
            record = self.tokens.get(user_id)
            if record is None:
                raise RecordNotFoundError(user_id, "token")

            if reached_before is not None and (
                record.limit_reached_at is None or record.limit_reached_at > reached_before
            ):
                return record

            record = TokenRecord(user_id=user_id, current_tokens=0, can_chat=True)
            self.tokens[user_id] = record
            return record

    # Account Operations

    async def purge_user(self, user_id: str) -> int:
        async with self._lock("gem", user_id), self._lock("token", user_id):
            deleted = 0
            if self.gems.pop(user_id, None) is not None:
                deleted += 1
            if self.tokens.pop(user_id, None) is not None:
                deleted += 1
            return deleted

    # Subscription Operations

    async def is_alpha_tester(self, email: str) -> bool:
        return self.alpha_testers.get(email.lower(), False)

    async def upsert_subscription(
        self,
        user_id: str,
        email: str,
        subscribed: bool,
        tier: Optional[str],
        subscription_end: Optional[datetime],
        now: datetime,
    ) -> None:
        self.subscribers[email.lower()] = {
            "email": email,
            "user_id": user_id,
            "subscribed": subscribed,
            "subscription_tier": tier,
            "subscription_end": subscription_end,
            "updated_at": now,
        }

    # Helpers

    def _require_gems(self, user_id: str) -> GemRecord:
        record = self.gems.get(user_id)
        if record is None:
            raise RecordNotFoundError(user_id, "gem")
        return record

    @staticmethod
    def _refilled(record: GemRecord, now: datetime, window: timedelta) -> GemRecord:
        return record.model_copy(
            update={
                "current_gems": record.max_gems,
                "last_reset_at": now,
                "next_reset_at": now + window,
            }
        )
