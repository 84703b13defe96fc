"""
ABOUTME: Supabase-backed quota store
ABOUTME: Mutations go through Postgres functions (rpc) so each one is a single transaction
"""

import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from supabase import Client, create_client

from quota_service.config import settings
from quota_service.db.models import (
    DeductResult,
    GemRecord,
    ResetResult,
    SubscriptionTier,
    TokenRecord,
    TrackResult,
)
from quota_service.db.store import QuotaStore
from quota_service.exceptions import QuotaServiceError, RecordNotFoundError, StoreUnavailableError
from quota_service.utils.logging import log_error
from quota_service.utils.metrics import metrics_manager


class SupabaseQuotaStore(QuotaStore):
    """
    Wrapper for quota operations against Supabase.

    Reads use the table API. Every read-modify-write is a Postgres function
    from ``supabase/migrations`` that locks the user's row, so concurrent
    requests from several devices serialize in the database.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key,  # Use service role for backend
            )
        return self._client

    def _execute(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run one store call, timing it and mapping failures to StoreUnavailableError"""
        start = time.time()
        try:
            result = call()
        except QuotaServiceError:
            raise
        except Exception as e:
            metrics_manager.track_store_operation(operation, time.time() - start, success=False)
            log_error(e, context={"operation": operation})
            raise StoreUnavailableError(operation, str(e)) from e

        metrics_manager.track_store_operation(operation, time.time() - start)
        return result

    def _rpc(self, operation: str, function: str, params: Dict[str, Any]) -> Dict[str, Any]:
        result = self._execute(operation, lambda: self.client.rpc(function, params).execute())
        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise RecordNotFoundError(params.get("p_user_id", ""), operation)
        return data

    # Gem Operations

    async def get_gem_record(self, user_id: str) -> Optional[GemRecord]:
        result = self._execute(
            "get_gem_record",
            lambda: self.client.table("user_gems")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
        )
        if result.data:
            return GemRecord(**result.data[0])
        return None

    async def initialize_gems(
        self, user_id: str, tier: SubscriptionTier, max_gems: int, now: datetime, window: timedelta
    ) -> GemRecord:
        data = {
            "user_id": user_id,
            "current_gems": max_gems,
            "max_gems": max_gems,
            "subscription_tier": tier.value,
            "last_reset_at": now.isoformat(),
            "next_reset_at": (now + window).isoformat(),
        }

        # ignore_duplicates keeps an existing row untouched
        self._execute(
            "initialize_gems",
            lambda: self.client.table("user_gems")
            .upsert(data, on_conflict="user_id", ignore_duplicates=True)
            .execute(),
        )

        record = await self.get_gem_record(user_id)
        if record is None:
            raise RecordNotFoundError(user_id, "gem")
        return record

    async def deduct_gems(
        self, user_id: str, amount: int, now: datetime, window: timedelta
    ) -> DeductResult:
        data = self._rpc(
            "deduct_gems",
            "deduct_gems",
            {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_now": now.isoformat(),
                "p_window_seconds": int(window.total_seconds()),
            },
        )
        return DeductResult(success=data["success"], remaining_gems=data["remaining_gems"])

    async def reset_gems(
        self, user_id: str, now: datetime, window: timedelta, only_if_elapsed: bool = False
    ) -> ResetResult:
        data = self._rpc(
            "reset_gems",
            "reset_gems",
            {
                "p_user_id": user_id,
                "p_now": now.isoformat(),
                "p_window_seconds": int(window.total_seconds()),
                "p_only_if_elapsed": only_if_elapsed,
            },
        )
        return ResetResult(
            success=True,
            current_gems=data["current_gems"],
            next_reset_at=data["next_reset_at"],
        )

    async def set_tier(
        self, user_id: str, tier: SubscriptionTier, max_gems: int
    ) -> Optional[GemRecord]:
        result = self._execute(
            "set_tier",
            lambda: self.client.table("user_gems")
            .update({"subscription_tier": tier.value, "max_gems": max_gems})
            .eq("user_id", user_id)
            .execute(),
        )
        if result.data:
            return GemRecord(**result.data[0])
        return None

    # Token Operations

    async def get_token_record(self, user_id: str) -> Optional[TokenRecord]:
        result = self._execute(
            "get_token_record",
            lambda: self.client.table("user_token_limits")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
        )
        if result.data:
            return TokenRecord(**result.data[0])
        return None

    async def initialize_tokens(self, user_id: str) -> TokenRecord:
        data = {"user_id": user_id, "current_tokens": 0, "can_chat": True, "limit_reached_at": None}

        self._execute(
            "initialize_tokens",
            lambda: self.client.table("user_token_limits")
            .upsert(data, on_conflict="user_id", ignore_duplicates=True)
            .execute(),
        )

        record = await self.get_token_record(user_id)
        if record is None:
            raise RecordNotFoundError(user_id, "token")
        return record

    async def add_tokens(
        self, user_id: str, tokens: int, limit: int, now: datetime
    ) -> TrackResult:
        data = self._rpc(
            "track_tokens",
            "track_tokens",
            {
                "p_user_id": user_id,
                "p_tokens": tokens,
                "p_limit": limit,
                "p_now": now.isoformat(),
            },
        )
        return TrackResult(
            success=True,
            timeout_triggered=data["timeout_triggered"],
            current_tokens=data["current_tokens"],
            can_chat=data["can_chat"],
        )

    async def clear_token_timeout(
        self, user_id: str, reached_before: Optional[datetime] = None
    ) -> TokenRecord:
        data = self._rpc(
            "clear_token_timeout",
            "clear_token_timeout",
            {
                "p_user_id": user_id,
                "p_reached_before": reached_before.isoformat() if reached_before else None,
            },
        )
        return TokenRecord(**data)

    # Account Operations

    async def purge_user(self, user_id: str) -> int:
        result = self._execute(
            "purge_user",
            lambda: self.client.rpc("purge_user_quota", {"p_user_id": user_id}).execute(),
        )
        return int(result.data or 0)

    # Subscription Operations

    async def is_alpha_tester(self, email: str) -> bool:
        result = self._execute(
            "is_alpha_tester",
            lambda: self.client.table("profiles")
            .select("alpha_tester")
            .eq("email", email)
            .limit(1)
            .execute(),
        )
        return bool(result.data and result.data[0].get("alpha_tester"))

    async def upsert_subscription(
        self,
        user_id: str,
        email: str,
        subscribed: bool,
        tier: Optional[str],
        subscription_end: Optional[datetime],
        now: datetime,
    ) -> None:
        data = {
            "email": email,
            "user_id": user_id,
            "subscribed": subscribed,
            "subscription_tier": tier,
            "subscription_end": subscription_end.isoformat() if subscription_end else None,
            "updated_at": now.isoformat(),
        }

        self._execute(
            "upsert_subscription",
            lambda: self.client.table("subscribers").upsert(data, on_conflict="email").execute(),
        )
