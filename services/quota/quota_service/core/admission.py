"""
ABOUTME: Client-session admission control for AI requests
ABOUTME: Cooldown between requests, in-flight cap, and a failure circuit breaker
"""

from dataclasses import dataclass, field, replace
from typing import Callable, FrozenSet, Optional

from quota_service.config import settings
from quota_service.utils.clock import now_ms
from quota_service.utils.logging import logger
from quota_service.utils.metrics import metrics_manager

CONCURRENCY_WAIT_MS = 2000


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: Optional[str] = None
    wait_time_ms: int = 0


@dataclass(frozen=True)
class AdmissionState:
    """Snapshot of one session's admission state; replaced whole on every change"""

    last_request_time: int = 0
    active_requests: FrozenSet[str] = field(default_factory=frozenset)
    failed_request_count: int = 0
    last_failure_time: int = 0
    blocked_until: int = 0


class AdmissionController:
    """
    Advisory flow control for one client session

    Blocks request storms before they reach the quota store. It is not a
    quota check: the store's atomic debit decides whether gems exist.

    Cooldown ends ``cooldown_ms`` after the last admitted request. After
    ``failure_threshold`` failures, each within ``failure_window_ms`` of the
    previous one, the circuit opens for ``block_duration_ms``.
    """

    def __init__(
        self,
        cooldown_ms: Optional[int] = None,
        max_concurrent_requests: Optional[int] = None,
        failure_threshold: Optional[int] = None,
        failure_window_ms: Optional[int] = None,
        block_duration_ms: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.cooldown_ms = settings.admission_cooldown_ms if cooldown_ms is None else cooldown_ms
        self.max_concurrent_requests = (
            max_concurrent_requests or settings.admission_max_concurrent_requests
        )
        self.failure_threshold = failure_threshold or settings.circuit_failure_threshold
        self.failure_window_ms = failure_window_ms or settings.circuit_failure_window_ms
        self.block_duration_ms = block_duration_ms or settings.circuit_block_duration_ms
        self.clock = clock
        self.state = AdmissionState()

    def can_make_request(self) -> AdmissionDecision:
        now = self.clock()
        state = self.state

        if state.blocked_until > now:
            return self._deny(
                "circuit_open",
                "Too many failed requests. Please try again later.",
                state.blocked_until - now,
            )

        elapsed = now - state.last_request_time
        if state.last_request_time and elapsed < self.cooldown_ms:
            return self._deny(
                "cooldown",
                "Please wait before sending another message.",
                self.cooldown_ms - elapsed,
            )

        if len(state.active_requests) >= self.max_concurrent_requests:
            return self._deny(
                "concurrency",
                "Another request is already in progress. Please wait.",
                CONCURRENCY_WAIT_MS,
            )

        return AdmissionDecision(allowed=True)

    def start_request(self, request_id: str) -> AdmissionDecision:
        """Admit ``request_id`` if allowed, entering cooldown"""
        decision = self.can_make_request()
        if not decision.allowed:
            return decision

        self.state = replace(
            self.state,
            last_request_time=self.clock(),
            active_requests=self.state.active_requests | {request_id},
        )
        return decision

    def complete_request(self, request_id: str, success: bool) -> None:
        now = self.clock()
        prev = self.state

        failed_count = prev.failed_request_count
        last_failure = prev.last_failure_time
        blocked_until = prev.blocked_until

        if not success:
            if now - prev.last_failure_time > self.failure_window_ms:
                failed_count = 1
            else:
                failed_count = prev.failed_request_count + 1
            last_failure = now

            if failed_count >= self.failure_threshold:
                blocked_until = now + self.block_duration_ms
                metrics_manager.track_circuit_opened()
                logger.warning(
                    f"Circuit breaker opened for {self.block_duration_ms // 60000} minutes",
                    extra={"failed_request_count": failed_count, "blocked_until": blocked_until},
                )
        elif now - prev.last_failure_time < self.failure_window_ms:
            # Recovery credit for a success shortly after failures
            failed_count = max(0, prev.failed_request_count - 1)

        self.state = replace(
            prev,
            active_requests=prev.active_requests - {request_id},
            failed_request_count=failed_count,
            last_failure_time=last_failure,
            blocked_until=blocked_until,
        )

    def release_request(self, request_id: str) -> None:
        """Drop an abandoned request without counting it as success or failure"""
        self.state = replace(
            self.state, active_requests=self.state.active_requests - {request_id}
        )

    def remaining_cooldown_ms(self) -> int:
        if not self.is_in_cooldown:
            return 0
        return max(0, self.cooldown_ms - (self.clock() - self.state.last_request_time))

    def block_time_remaining_ms(self) -> int:
        return max(0, self.state.blocked_until - self.clock())

    def reset_circuit_breaker(self) -> None:
        self.state = replace(
            self.state, failed_request_count=0, blocked_until=0, last_failure_time=0
        )

    @property
    def is_in_cooldown(self) -> bool:
        last = self.state.last_request_time
        return bool(last) and self.clock() - last < self.cooldown_ms

    @property
    def is_blocked(self) -> bool:
        return self.state.blocked_until > self.clock()

    @property
    def active_request_count(self) -> int:
        return len(self.state.active_requests)

    @property
    def failed_request_count(self) -> int:
        return self.state.failed_request_count

    def _deny(self, code: str, reason: str, wait_time_ms: int) -> AdmissionDecision:
        metrics_manager.track_admission_denied(code)
        return AdmissionDecision(allowed=False, reason=reason, wait_time_ms=max(0, wait_time_ms))
