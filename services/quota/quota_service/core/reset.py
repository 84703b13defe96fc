"""
ABOUTME: Lazy quota window resets evaluated on every status read
ABOUTME: Refills gems after the window and lifts token lockouts after the timeout
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from quota_service.config import settings
from quota_service.core.tiers import max_gems_for, resolve_tier
from quota_service.db.models import (
    GemRecord,
    GemStatus,
    ResetResult,
    SubscriptionTier,
    TokenRecord,
    TokenStatus,
)
from quota_service.db.store import QuotaStore
from quota_service.exceptions import TokenLockoutError
from quota_service.utils.clock import millis_between, utcnow
from quota_service.utils.logging import log_quota_event
from quota_service.utils.metrics import metrics_manager


class ResetScheduler:
    """
    Reads quota status, resetting elapsed windows on the way

    A stale read triggers one conditional reset in the store followed by one
    re-read. The reset only applies while the window is still elapsed, so
    concurrent readers cannot refill twice.
    """

    def __init__(
        self,
        store: QuotaStore,
        clock: Callable[[], datetime] = utcnow,
        gem_window: Optional[timedelta] = None,
        token_limit: Optional[int] = None,
        token_timeout: Optional[timedelta] = None,
    ):
        self.store = store
        self.clock = clock
        self.gem_window = gem_window or timedelta(hours=settings.gem_window_hours)
        self.token_limit = token_limit or settings.token_limit
        self.token_timeout = token_timeout or timedelta(minutes=settings.token_timeout_minutes)

    # Gems

    async def ensure_gem_record(
        self, user_id: str, tier: Optional[Union[str, SubscriptionTier]] = None
    ) -> GemRecord:
        """Return the user's gem row, creating a full one on first use"""
        record = await self.store.get_gem_record(user_id)
        if record is not None:
            return record

        resolved = resolve_tier(tier)
        record = await self.store.initialize_gems(
            user_id, resolved, max_gems_for(resolved), self.clock(), self.gem_window
        )
        log_quota_event(
            "initialized", user_id, extra={"tier": resolved.value, "max_gems": record.max_gems}
        )
        return record

    async def get_gem_status(self, user_id: str) -> GemStatus:
        """
        Current gem balance; refills first if the window has elapsed

        A missing row is created at the basic tier. Tiers only change
        through the subscription path, never from a status read.
        """
        return await self._gem_status(user_id, allow_reset=True)

    async def _gem_status(self, user_id: str, allow_reset: bool) -> GemStatus:
        record = await self.ensure_gem_record(user_id)
        now = self.clock()

        if allow_reset and now >= record.next_reset_at:
            await self.store.reset_gems(user_id, now, self.gem_window, only_if_elapsed=True)
            metrics_manager.track_reset("gem", "lazy")
            log_quota_event(
                "reset",
                user_id,
                extra={"trigger": "lazy", "stale_next_reset_at": record.next_reset_at.isoformat()},
            )
            return await self._gem_status(user_id, allow_reset=False)

        return GemStatus(
            current_gems=record.current_gems,
            max_gems=record.max_gems,
            subscription_tier=record.subscription_tier,
            next_reset_at=record.next_reset_at,
            can_chat=record.current_gems > 0,
            time_until_reset_ms=millis_between(now, record.next_reset_at),
        )

    async def reset_gems(self, user_id: str) -> ResetResult:
        """Refill to max_gems and start a new window now"""
        now = self.clock()
        result = await self.store.reset_gems(user_id, now, self.gem_window)

        metrics_manager.track_reset("gem", "explicit")
        log_quota_event(
            "reset",
            user_id,
            extra={
                "trigger": "explicit",
                "current_gems": result.current_gems,
                "next_reset_at": result.next_reset_at.isoformat(),
            },
        )
        return result

    # Tokens

    async def ensure_token_record(self, user_id: str) -> TokenRecord:
        record = await self.store.get_token_record(user_id)
        if record is None:
            record = await self.store.initialize_tokens(user_id)
        return record

    async def get_token_status(self, user_id: str) -> TokenStatus:
        """Current lockout state; lifts an expired lockout first"""
        return await self._token_status(user_id, allow_reset=True)

    async def _token_status(self, user_id: str, allow_reset: bool) -> TokenStatus:
        record = await self.ensure_token_record(user_id)
        now = self.clock()

        if allow_reset and self._lockout_expired(record, now):
            reached_before = None
            if record.limit_reached_at is not None:
                reached_before = now - self.token_timeout
            await self.clear_token_timeout(user_id, reached_before=reached_before)
            return await self._token_status(user_id, allow_reset=False)

        timeout_ends_at = None
        time_until_reset_ms = 0
        if not record.can_chat and record.limit_reached_at is not None:
            timeout_ends_at = record.limit_reached_at + self.token_timeout
            time_until_reset_ms = millis_between(now, timeout_ends_at)

        return TokenStatus(
            current_tokens=record.current_tokens,
            limit=self.token_limit,
            can_chat=record.can_chat,
            limit_reached_at=record.limit_reached_at,
            timeout_ends_at=timeout_ends_at,
            time_until_reset_ms=time_until_reset_ms,
        )

    async def assert_token_chat_allowed(self, user_id: str) -> TokenStatus:
        """Raise TokenLockoutError while the user's token lockout is active"""
        status = await self.get_token_status(user_id)
        if status.can_chat:
            return status

        timeout_ends_at = status.timeout_ends_at or self.clock()
        raise TokenLockoutError(
            user_id,
            timeout_end_ms=int(timeout_ends_at.timestamp() * 1000),
            retry_after_seconds=max(1, math.ceil(status.time_until_reset_ms / 1000)),
        )

    async def clear_token_timeout(
        self, user_id: str, reached_before: Optional[datetime] = None
    ) -> TokenRecord:
        record = await self.store.clear_token_timeout(user_id, reached_before=reached_before)

        metrics_manager.track_reset("token", "lazy" if reached_before else "explicit")
        log_quota_event("reset", user_id, kind="token", extra={"can_chat": record.can_chat})
        return record

    def _lockout_expired(self, record: TokenRecord, now: datetime) -> bool:
        if record.can_chat:
            return False
        # Lockout without a timestamp has no end; treat it as expired
        if record.limit_reached_at is None:
            return True
        return now >= record.limit_reached_at + self.token_timeout
