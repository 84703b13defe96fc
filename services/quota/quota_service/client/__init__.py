"""Python client for the quota service"""

from quota_service.client.http import QuotaClient
from quota_service.client.responses import Err, Ok, QuotaResponse
from quota_service.client.session import (
    AIExchange,
    ChatOutcome,
    ChatSession,
    SessionPreferences,
)

__all__ = [
    "AIExchange",
    "ChatOutcome",
    "ChatSession",
    "Err",
    "Ok",
    "QuotaClient",
    "QuotaResponse",
    "SessionPreferences",
]
