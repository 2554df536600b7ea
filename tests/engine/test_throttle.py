# tests/engine/test_throttle.py
"""Tests for AIMD throttle state machine."""

from kastrace.engine.throttle import AIMDThrottle, ThrottleConfig


class TestAIMDThrottleInit:
    def test_default_config_values(self) -> None:
        throttle = AIMDThrottle()

        assert throttle.current_delay_ms == 0
        assert throttle.config.max_dispatch_delay_ms == 5000
        assert throttle.config.backoff_multiplier == 2.0
        assert throttle.config.recovery_step_ms == 50


class TestAIMDThrottleBackoff:
    """Multiplicative increase of the delay on capacity errors."""

    def test_first_capacity_error_bootstraps_to_recovery_step(self) -> None:
        throttle = AIMDThrottle()

        throttle.on_capacity_error()

        assert throttle.current_delay_ms == 50

    def test_bootstrap_honours_minimum_delay(self) -> None:
        throttle = AIMDThrottle(ThrottleConfig(min_dispatch_delay_ms=200, recovery_step_ms=50))

        throttle.on_capacity_error()

        assert throttle.current_delay_ms == 200

    def test_subsequent_errors_multiply_delay(self) -> None:
        throttle = AIMDThrottle(ThrottleConfig(backoff_multiplier=3.0, recovery_step_ms=100))

        throttle.on_capacity_error()  # 0 -> 100
        throttle.on_capacity_error()  # 100 * 3 = 300

        assert throttle.current_delay_ms == 300

    def test_delay_capped_at_max(self) -> None:
        throttle = AIMDThrottle(ThrottleConfig(max_dispatch_delay_ms=150, recovery_step_ms=100))

        for _ in range(5):
            throttle.on_capacity_error()

        assert throttle.current_delay_ms == 150


class TestAIMDThrottleRecovery:
    """Additive decrease of the delay on success."""

    def test_success_subtracts_recovery_step(self) -> None:
        throttle = AIMDThrottle(ThrottleConfig(recovery_step_ms=100))
        throttle.on_capacity_error()
        throttle.on_capacity_error()  # 200

        throttle.on_success()

        assert throttle.current_delay_ms == 100

    def test_success_never_goes_below_minimum(self) -> None:
        throttle = AIMDThrottle(ThrottleConfig(min_dispatch_delay_ms=10))

        throttle.on_success()

        assert throttle.current_delay_ms == 10

    def test_stats(self) -> None:
        throttle = AIMDThrottle()
        throttle.on_capacity_error()
        throttle.on_capacity_error()
        throttle.on_success()

        stats = throttle.get_stats()

        assert stats["capacity_errors"] == 2
        assert stats["successes"] == 1
        assert stats["peak_delay_ms"] == 100
        assert stats["current_delay_ms"] == 50
