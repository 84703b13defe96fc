"""
ABOUTME: Client-side chat session that gates AI calls on admission and quota
ABOUTME: Also holds per-session preference flags (consent, age gate, migration)
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple

from quota_service.client.http import QuotaClient
from quota_service.client.responses import Err
from quota_service.core.admission import AdmissionController
from quota_service.db.models import ChargeResult
from quota_service.utils.logging import logger


@dataclass
class SessionPreferences:
    """
    Per-session flags

    Every flag starts False and only becomes True through an explicit call to
    ``record``; nothing is inferred from other state.
    """

    cookie_consent: bool = False
    age_verified: bool = False
    conversations_migrated: bool = False

    @classmethod
    def load(cls, path: Path) -> "SessionPreferences":
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session preferences: {e}")
            return cls()
        if not isinstance(data, dict):
            logger.warning(f"Ignoring session preferences of type {type(data).__name__}")
            return cls()
        known = {f.name for f in fields(cls)}
        # Only a stored JSON true sets a flag
        return cls(**{k: v is True for k, v in data.items() if k in known})

    def record(self, name: str, value: bool = True, path: Optional[Path] = None) -> None:
        if name not in {f.name for f in fields(self)}:
            raise ValueError(f"Unknown session preference: {name}")
        setattr(self, name, value)
        if path is not None:
            path.write_text(json.dumps(asdict(self)))

    async def run_once(
        self, name: str, action: Callable[[], Awaitable[Any]], path: Optional[Path] = None
    ) -> bool:
        """Run ``action`` unless flag ``name`` is already set; returns True if it ran"""
        if getattr(self, name):
            return False
        await action()
        self.record(name, True, path)
        return True


@dataclass(frozen=True)
class AIExchange:
    """Result of one AI call with its token usage"""

    reply: Any
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class ChatOutcome:
    allowed: bool
    reason: Optional[str] = None
    wait_time_ms: int = 0
    reply: Any = None
    charge: Optional[ChargeResult] = None
    error: Optional[str] = None


class ChatSession:
    """
    One user's chat loop

    Order per message: admission, gem status check, AI call, charge. The
    admission controller is told whether the round trip failed, so repeated
    store or AI failures open its circuit.
    """

    def __init__(
        self,
        client: QuotaClient,
        controller: Optional[AdmissionController] = None,
        preferences: Optional[SessionPreferences] = None,
        require_age_verification: bool = False,
    ):
        self.client = client
        self.controller = controller or AdmissionController()
        self.preferences = preferences or SessionPreferences()
        self.require_age_verification = require_age_verification

    async def send(
        self, request_id: str, call: Callable[[], Awaitable[AIExchange]]
    ) -> ChatOutcome:
        if self.require_age_verification and not self.preferences.age_verified:
            return ChatOutcome(allowed=False, reason="Age verification required")

        decision = self.controller.start_request(request_id)
        if not decision.allowed:
            return ChatOutcome(
                allowed=False, reason=decision.reason, wait_time_ms=decision.wait_time_ms
            )

        try:
            outcome, success = await self._exchange(request_id, call)
        except BaseException:
            # Cancelled or abandoned: free the slot, leave the circuit alone
            self.controller.release_request(request_id)
            raise

        self.controller.complete_request(request_id, success=success)
        return outcome

    async def _exchange(
        self, request_id: str, call: Callable[[], Awaitable[AIExchange]]
    ) -> Tuple[ChatOutcome, bool]:
        """One admitted round trip; returns the outcome and whether it succeeded"""
        status = await self.client.get_gem_status()
        if isinstance(status, Err):
            return ChatOutcome(allowed=False, reason=status.message, error=status.message), False

        if not status.value.can_chat:
            outcome = ChatOutcome(
                allowed=False,
                reason="No gems remaining",
                wait_time_ms=status.value.time_until_reset_ms,
            )
            return outcome, True

        try:
            exchange = await call()
        except Exception as e:
            logger.error(
                f"AI call failed: {type(e).__name__}", extra={"request_id": request_id}
            )
            return ChatOutcome(allowed=True, error=str(e)), False

        charge = await self.client.charge_interaction(
            exchange.input_tokens, exchange.output_tokens
        )
        if isinstance(charge, Err):
            # Insufficient gems at charge time is a quota outcome, not a failure
            outcome = ChatOutcome(allowed=True, reply=exchange.reply, error=charge.message)
            return outcome, not charge.is_unavailable

        return ChatOutcome(allowed=True, reply=exchange.reply, charge=charge.value), True
