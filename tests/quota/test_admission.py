"""
Test client admission control: cooldown, concurrency and circuit breaker
"""

import pytest

from quota_service.core.admission import CONCURRENCY_WAIT_MS, AdmissionController


@pytest.fixture
def controller(ms_clock):
    return AdmissionController(
        cooldown_ms=3000,
        max_concurrent_requests=1,
        failure_threshold=5,
        failure_window_ms=5 * 60 * 1000,
        block_duration_ms=15 * 60 * 1000,
        clock=ms_clock,
    )


class TestCooldown:
    """Minimum spacing between admitted requests"""

    def test_first_request_is_allowed(self, controller):
        decision = controller.start_request("r1")

        assert decision.allowed is True
        assert controller.active_request_count == 1

    def test_request_inside_cooldown_is_denied(self, controller, ms_clock):
        controller.start_request("r1")
        controller.complete_request("r1", success=True)
        ms_clock.advance(1000)

        decision = controller.can_make_request()

        assert decision.allowed is False
        assert decision.reason == "Please wait before sending another message."
        assert decision.wait_time_ms == 2000
        assert controller.remaining_cooldown_ms() == 2000

    def test_request_after_cooldown_is_allowed(self, controller, ms_clock):
        controller.start_request("r1")
        controller.complete_request("r1", success=True)
        ms_clock.advance(3000)

        assert controller.is_in_cooldown is False
        assert controller.start_request("r2").allowed is True

    def test_denied_request_does_not_restart_cooldown(self, controller, ms_clock):
        controller.start_request("r1")
        controller.complete_request("r1", success=True)
        ms_clock.advance(2000)
        controller.start_request("r2")
        ms_clock.advance(1000)

        assert controller.start_request("r3").allowed is True


class TestConcurrency:
    """In-flight request cap"""

    def test_second_in_flight_request_is_denied(self, ms_clock):
        controller = AdmissionController(cooldown_ms=0, clock=ms_clock)
        controller.start_request("r1")

        decision = controller.start_request("r2")

        assert decision.allowed is False
        assert decision.reason == "Another request is already in progress. Please wait."
        assert decision.wait_time_ms == CONCURRENCY_WAIT_MS

    def test_completion_frees_the_slot(self, ms_clock):
        controller = AdmissionController(cooldown_ms=0, clock=ms_clock)
        controller.start_request("r1")
        controller.complete_request("r1", success=True)

        assert controller.start_request("r2").allowed is True

    def test_release_frees_the_slot_without_a_failure(self, ms_clock):
        controller = AdmissionController(cooldown_ms=0, clock=ms_clock)
        controller.start_request("r1")

        controller.release_request("r1")

        assert controller.active_request_count == 0
        assert controller.failed_request_count == 0
        assert controller.is_blocked is False
        assert controller.start_request("r2").allowed is True


class TestCircuitBreaker:
    """Failure counting and blocking"""

    def _fail(self, controller, ms_clock, count, spacing_ms=3000):
        for i in range(count):
            controller.start_request(f"r{i}")
            controller.complete_request(f"r{i}", success=False)
            ms_clock.advance(spacing_ms)

    def test_five_failures_open_the_circuit(self, controller, ms_clock):
        self._fail(controller, ms_clock, 5)

        decision = controller.can_make_request()

        assert controller.is_blocked is True
        assert decision.allowed is False
        assert decision.reason == "Too many failed requests. Please try again later."
        assert decision.wait_time_ms == 15 * 60 * 1000 - 3000

    def test_circuit_closes_after_block(self, controller, ms_clock):
        self._fail(controller, ms_clock, 5)
        ms_clock.advance(15 * 60 * 1000)

        assert controller.is_blocked is False
        assert controller.can_make_request().allowed is True

    def test_failures_outside_window_restart_count(self, controller, ms_clock):
        self._fail(controller, ms_clock, 4)
        ms_clock.advance(5 * 60 * 1000)
        self._fail(controller, ms_clock, 1)

        assert controller.failed_request_count == 1
        assert controller.is_blocked is False

    def test_success_after_failure_recovers_one(self, controller, ms_clock):
        self._fail(controller, ms_clock, 3)

        controller.start_request("ok")
        controller.complete_request("ok", success=True)

        assert controller.failed_request_count == 2

    def test_count_never_goes_negative(self, controller, ms_clock):
        self._fail(controller, ms_clock, 1)
        for i in range(3):
            controller.start_request(f"ok{i}")
            controller.complete_request(f"ok{i}", success=True)
            ms_clock.advance(3000)

        assert controller.failed_request_count == 0

    def test_manual_reset_closes_circuit(self, controller, ms_clock):
        self._fail(controller, ms_clock, 5)

        controller.reset_circuit_breaker()

        assert controller.is_blocked is False
        assert controller.failed_request_count == 0
        assert controller.block_time_remaining_ms() == 0

    def test_state_is_replaced_not_mutated(self, controller):
        before = controller.state
        controller.start_request("r1")

        assert before.active_requests == frozenset()
        assert controller.state is not before
