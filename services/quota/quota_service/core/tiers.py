"""
ABOUTME: Subscription tier policy for gem quotas
ABOUTME: Lookup from tier to gems per window, and applying a tier to a user's row
"""

from datetime import datetime, timedelta
from typing import Dict, Optional, Union

from quota_service.db.models import GemRecord, SubscriptionTier
from quota_service.db.store import QuotaStore

GEM_LIMITS: Dict[SubscriptionTier, int] = {
    SubscriptionTier.BASIC: 50,
    SubscriptionTier.PRO: 200,
    SubscriptionTier.ENTERPRISE: 500,
}


def resolve_tier(tier: Optional[Union[str, SubscriptionTier]]) -> SubscriptionTier:
    """Normalize a tier name; unknown, empty or None map to basic"""
    if isinstance(tier, SubscriptionTier):
        return tier
    if not tier:
        return SubscriptionTier.BASIC
    try:
        return SubscriptionTier(tier.strip().lower())
    except ValueError:
        return SubscriptionTier.BASIC


def max_gems_for(tier: Optional[Union[str, SubscriptionTier]]) -> int:
    """Gems granted per window for a tier"""
    return GEM_LIMITS[resolve_tier(tier)]


async def apply_tier(
    store: QuotaStore,
    user_id: str,
    tier: Optional[Union[str, SubscriptionTier]],
    now: datetime,
    window: timedelta,
) -> GemRecord:
    """
    Set the user's tier and gem ceiling

    ``current_gems`` is left alone, so the new ceiling takes effect at the
    next reset. A user without a gem row gets one, full at the new tier.
    """
    resolved = resolve_tier(tier)
    max_gems = max_gems_for(resolved)

    record = await store.set_tier(user_id, resolved, max_gems)
    if record is not None:
        return record

    record = await store.initialize_gems(user_id, resolved, max_gems, now, window)
    if record.subscription_tier != resolved or record.max_gems != max_gems:
        # A concurrent first read created the row at another tier
        record = await store.set_tier(user_id, resolved, max_gems)
    return record
