"""
ABOUTME: Alpha tester program: enrollment code validation and self-service tier switch
ABOUTME: Tier switches are limited to enrolled testers acting on their own account
"""

import hmac
from datetime import datetime, timedelta
from typing import Callable, Optional

from quota_service.auth.models import User
from quota_service.config import settings
from quota_service.core.tiers import apply_tier, resolve_tier
from quota_service.db.models import AlphaCodeResponse, AlphaTierSwitchRequest
from quota_service.db.store import QuotaStore
from quota_service.exceptions import InvalidTransitionError, QuotaServiceError
from quota_service.utils.clock import utcnow
from quota_service.utils.logging import log_error, log_security_event, logger


def validate_alpha_code(code: Optional[str], expected: Optional[str] = None) -> AlphaCodeResponse:
    """Compare an enrollment code with the configured secret, ignoring case and padding"""
    secret = settings.alpha_tester_code if expected is None else expected

    if not secret:
        logger.error("ALPHA_TESTER_CODE not configured")
        return AlphaCodeResponse(valid=False, error="Alpha testing not available")

    candidate = (code or "").strip().upper()
    valid = hmac.compare_digest(candidate.encode(), secret.strip().upper().encode())

    if not valid:
        log_security_event("alpha_code_rejected", severity="WARNING")
    return AlphaCodeResponse(valid=valid)


class AlphaTierSwitcher:
    """
    Applies a tester's requested subscription state

    Two writes, not one transaction: the subscribers row first, then the
    gem ceiling. Both are upserts, so when the second write fails the
    error propagates and re-sending the same switch converges.
    """

    def __init__(
        self,
        store: QuotaStore,
        clock: Callable[[], datetime] = utcnow,
        gem_window: Optional[timedelta] = None,
    ):
        self.store = store
        self.clock = clock
        self.gem_window = gem_window or timedelta(hours=settings.gem_window_hours)

    async def switch(self, user: User, request: AlphaTierSwitchRequest) -> None:
        """
        Update the caller's subscription and gem ceiling

        Raises:
            InvalidTransitionError: caller has no email, is not enrolled, or
                names another account. Nothing is written in that case.
        """
        user_id = str(user.id)

        if not user.email:
            raise InvalidTransitionError("User not authenticated or email not available")

        if not await self.store.is_alpha_tester(user.email):
            log_security_event("tier_switch_rejected", user_id=user_id, severity="WARNING",
                               extra={"reason": "not_enrolled"})
            raise InvalidTransitionError("User is not an alpha tester")

        if request.email.lower() != user.email.lower():
            log_security_event("tier_switch_rejected", user_id=user_id, email=request.email,
                               severity="WARNING", extra={"reason": "email_mismatch"})
            raise InvalidTransitionError("Email mismatch")

        normalized_tier = request.subscription_tier.lower() if request.subscription_tier else None

        await self.store.upsert_subscription(
            user_id=user_id,
            email=user.email,
            subscribed=request.subscribed,
            tier=normalized_tier,
            subscription_end=request.subscription_end,
            now=self.clock(),
        )

        tier = resolve_tier(normalized_tier if request.subscribed else None)
        try:
            await apply_tier(self.store, user_id, tier, self.clock(), self.gem_window)
        except QuotaServiceError as e:
            log_error(e, user_id=user_id, context={"stage": "apply_tier", "subscription_written": True})
            raise

        logger.info(
            "Alpha tier switch applied",
            extra={"user_id": user_id, "subscribed": request.subscribed, "tier": tier.value},
        )
