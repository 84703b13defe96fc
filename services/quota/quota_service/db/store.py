"""
ABOUTME: Storage interface for per-user quota records
ABOUTME: Every mutating method is one atomic read-modify-write in the backend
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from quota_service.db.models import (
    DeductResult,
    GemRecord,
    ResetResult,
    SubscriptionTier,
    TokenRecord,
    TrackResult,
)


class QuotaStore(ABC):
    """
    Interface for storing and mutating quota records.

    Implementations must make ``deduct_gems``, ``reset_gems``,
    ``add_tokens`` and ``clear_token_timeout`` atomic per user: two
    concurrent calls for the same user serialize, and the loser observes
    the winner's result.
    """

    # Gem Operations

    @abstractmethod
    async def get_gem_record(self, user_id: str) -> Optional[GemRecord]:
        """Return the gem row or None"""

    @abstractmethod
    async def initialize_gems(
        self, user_id: str, tier: SubscriptionTier, max_gems: int, now: datetime, window: timedelta
    ) -> GemRecord:
        """Create a full gem row if the user has none; return the stored row"""

    @abstractmethod
    async def deduct_gems(
        self, user_id: str, amount: int, now: datetime, window: timedelta
    ) -> DeductResult:
        """
        Debit ``amount`` gems.

        An elapsed window is refilled first inside the same operation. When
        the balance is lower than ``amount`` nothing changes and the
        pre-debit balance is returned with ``success=False``.
        """

    @abstractmethod
    async def reset_gems(
        self, user_id: str, now: datetime, window: timedelta, only_if_elapsed: bool = False
    ) -> ResetResult:
        """
        Refill to ``max_gems`` and start a new window at ``now``.

        With ``only_if_elapsed`` the refill happens only when
        ``next_reset_at <= now``; otherwise the current row is returned.
        """

    @abstractmethod
    async def set_tier(
        self, user_id: str, tier: SubscriptionTier, max_gems: int
    ) -> Optional[GemRecord]:
        """Change tier and ceiling without touching current_gems"""

    # Token Operations

    @abstractmethod
    async def get_token_record(self, user_id: str) -> Optional[TokenRecord]:
        """Return the token row or None"""

    @abstractmethod
    async def initialize_tokens(self, user_id: str) -> TokenRecord:
        """Create an empty token row if the user has none; return the stored row"""

    @abstractmethod
    async def add_tokens(
        self, user_id: str, tokens: int, limit: int, now: datetime
    ) -> TrackResult:
        """
        Add tokens; when the new total reaches ``limit`` on a record that
        could chat, flip ``can_chat`` and stamp ``limit_reached_at`` in the
        same update.
        """

    @abstractmethod
    async def clear_token_timeout(
        self, user_id: str, reached_before: Optional[datetime] = None
    ) -> TokenRecord:
        """
        Zero the counter and lift the lockout.

        With ``reached_before`` the reset applies only when
        ``limit_reached_at <= reached_before``.
        """

    # Account Operations

    @abstractmethod
    async def purge_user(self, user_id: str) -> int:
        """Delete every quota row of the user; return rows removed"""

    # Subscription Operations

    @abstractmethod
    async def is_alpha_tester(self, email: str) -> bool:
        """Whether the profile with this email is enrolled as a tester"""

    @abstractmethod
    async def upsert_subscription(
        self,
        user_id: str,
        email: str,
        subscribed: bool,
        tier: Optional[str],
        subscription_end: Optional[datetime],
        now: datetime,
    ) -> None:
        """Write the subscribers row for ``email``"""


def get_quota_store() -> QuotaStore:
    """Return the process-wide store selected by ``QUOTA_STORE_BACKEND``"""
    global _store_instance

    if _store_instance is None:
        from quota_service.config import settings

        if settings.quota_store_backend == "memory":
            from quota_service.db.memory_store import InMemoryQuotaStore

            _store_instance = InMemoryQuotaStore()
        else:
            from quota_service.db.supabase_client import SupabaseQuotaStore

            _store_instance = SupabaseQuotaStore()

    return _store_instance


_store_instance: Optional[QuotaStore] = None
