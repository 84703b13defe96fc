"""
ABOUTME: Usage accounting for AI interactions
ABOUTME: Converts provider tokens to gems and debits/credits the quota store atomically
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from quota_service.config import settings
from quota_service.core.reset import ResetScheduler
from quota_service.db.models import ChargeResult, DeductResult, TrackResult
from quota_service.db.store import QuotaStore
from quota_service.exceptions import RecordNotFoundError
from quota_service.utils.clock import utcnow
from quota_service.utils.logging import log_quota_event
from quota_service.utils.metrics import metrics_manager

TOKENS_PER_GEM = 1000


def gems_from_tokens(
    input_tokens: int, output_tokens: int, tokens_per_gem: int = TOKENS_PER_GEM
) -> int:
    """
    Gems consumed by one exchange, rounded up

    >>> gems_from_tokens(500, 600)
    2
    >>> gems_from_tokens(1000, 0)
    1
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("Token counts must be non-negative")
    return math.ceil((input_tokens + output_tokens) / tokens_per_gem)


class UsageAccountant:
    """
    Debits gems and records tokens

    Every mutation is a single store operation; nothing here reads a
    balance and writes it back.
    """

    def __init__(
        self,
        store: QuotaStore,
        scheduler: Optional[ResetScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        gem_window: Optional[timedelta] = None,
        token_limit: Optional[int] = None,
        tokens_per_gem: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.gem_window = gem_window or timedelta(hours=settings.gem_window_hours)
        self.token_limit = token_limit or settings.token_limit
        self.tokens_per_gem = tokens_per_gem or settings.tokens_per_gem
        self.scheduler = scheduler or ResetScheduler(
            store, clock=clock, gem_window=self.gem_window, token_limit=self.token_limit
        )

    async def debit(self, user_id: str, amount: int) -> DeductResult:
        """
        Take ``amount`` gems from the user's balance

        Fails closed: with an insufficient balance nothing changes and the
        result carries the pre-debit balance.
        """
        if amount <= 0:
            raise ValueError("Gem amount must be positive")

        try:
            result = await self.store.deduct_gems(user_id, amount, self.clock(), self.gem_window)
        except RecordNotFoundError:
            await self.scheduler.ensure_gem_record(user_id)
            result = await self.store.deduct_gems(user_id, amount, self.clock(), self.gem_window)

        metrics_manager.track_deduction(amount, result.success)
        log_quota_event(
            "deducted" if result.success else "rejected",
            user_id,
            extra={"requested": amount, "remaining_gems": result.remaining_gems},
        )
        return result

    async def add(self, user_id: str, tokens_added: int) -> TrackResult:
        """Record consumed tokens; trips the lockout when the limit is reached"""
        if tokens_added < 0:
            raise ValueError("Token amount must be non-negative")

        try:
            result = await self.store.add_tokens(user_id, tokens_added, self.token_limit, self.clock())
        except RecordNotFoundError:
            await self.scheduler.ensure_token_record(user_id)
            result = await self.store.add_tokens(user_id, tokens_added, self.token_limit, self.clock())

        metrics_manager.track_tokens(tokens_added, result.timeout_triggered)
        log_quota_event(
            "timeout_triggered" if result.timeout_triggered else "tokens_added",
            user_id,
            kind="token",
            extra={"tokens_added": tokens_added, "current_tokens": result.current_tokens},
        )
        return result

    async def charge_interaction(
        self, user_id: str, input_tokens: int, output_tokens: int
    ) -> ChargeResult:
        """Convert an exchange's token usage to gems and debit them"""
        gems = gems_from_tokens(input_tokens, output_tokens, self.tokens_per_gem)

        if gems == 0:
            status = await self.scheduler.get_gem_status(user_id)
            return ChargeResult(success=True, gems_charged=0, remaining_gems=status.current_gems)

        result = await self.debit(user_id, gems)
        return ChargeResult(
            success=result.success,
            gems_charged=gems if result.success else 0,
            remaining_gems=result.remaining_gems,
        )
