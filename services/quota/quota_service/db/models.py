"""
ABOUTME: Pydantic models for quota records, statuses and API payloads
ABOUTME: Mirrors the user_gems / user_token_limits tables and the HTTP contract
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class SubscriptionTier(str, Enum):
    """Subscription levels"""

    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Database Models (matches SQL schema)


class GemRecord(BaseModel):
    """Row of the user_gems table"""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    current_gems: int = Field(ge=0)
    max_gems: int = Field(gt=0)
    subscription_tier: SubscriptionTier = SubscriptionTier.BASIC
    last_reset_at: datetime
    next_reset_at: datetime

    @field_validator("subscription_tier", mode="before")
    @classmethod
    def normalize_tier(cls, v):
        # Unknown or missing tiers fall back to basic
        if v is None:
            return SubscriptionTier.BASIC
        try:
            return SubscriptionTier(str(getattr(v, "value", v)).strip().lower())
        except ValueError:
            return SubscriptionTier.BASIC


class TokenRecord(BaseModel):
    """Row of the user_token_limits table"""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    current_tokens: int = Field(default=0, ge=0)
    can_chat: bool = True
    limit_reached_at: Optional[datetime] = None


# Status / Result Models


class GemStatus(BaseModel):
    """Gem balance as seen by a caller after lazy reset"""

    current_gems: int
    max_gems: int
    subscription_tier: SubscriptionTier
    next_reset_at: datetime
    can_chat: bool
    time_until_reset_ms: int


class TokenStatus(BaseModel):
    """Token lockout state as seen by a caller after lazy reset"""

    current_tokens: int
    limit: int
    can_chat: bool
    limit_reached_at: Optional[datetime] = None
    timeout_ends_at: Optional[datetime] = None
    time_until_reset_ms: int = 0


class DeductResult(BaseModel):
    """Outcome of an atomic gem debit"""

    success: bool
    remaining_gems: int


class ResetResult(BaseModel):
    """Outcome of a gem window reset"""

    success: bool = True
    current_gems: int
    next_reset_at: datetime


class TrackResult(BaseModel):
    """Outcome of an atomic token add"""

    success: bool = True
    timeout_triggered: bool
    current_tokens: int
    can_chat: bool


class ChargeResult(BaseModel):
    """Outcome of charging one AI interaction in gems"""

    success: bool
    gems_charged: int
    remaining_gems: int


class PurgeResult(BaseModel):
    """Quota rows removed by an account purge"""

    success: bool = True
    deleted: int


# API Request Models


class DeductRequest(BaseModel):
    """Body of POST /gems/deduct"""

    user_id: Optional[str] = None
    gems_to_deduct: int = Field(gt=0)


class ResetRequest(BaseModel):
    """Body of POST /gems/reset"""

    user_id: Optional[str] = None


class TrackRequest(BaseModel):
    """Body of POST /tokens/track"""

    user_id: Optional[str] = None
    tokens_to_add: int = Field(ge=0)


class ChargeRequest(BaseModel):
    """Body of POST /gems/charge"""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)


class AlphaTierSwitchRequest(BaseModel):
    """Body of POST /alpha-tier-switch"""

    email: EmailStr
    subscribed: bool
    subscription_tier: Optional[str] = None
    subscription_end: Optional[datetime] = None


class AlphaCodeRequest(BaseModel):
    """Body of POST /validate-alpha-code"""

    code: Optional[str] = None


class AlphaCodeResponse(BaseModel):
    valid: bool
    error: Optional[str] = None