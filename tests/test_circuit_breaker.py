from unittest.mock import patch

from adasline.circuit_breaker import CircuitBreaker


class TestCircuitBreaker:
    def test_closed_by_default(self):
        cb = CircuitBreaker()
        assert cb.should_try() is True
        assert cb.is_open is False

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        assert cb.should_try() is True
        cb.record_failure()
        assert cb.is_open is True

    def test_half_open_after_cooldown(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=60.0)
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1000.0):
            cb.record_failure()
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1030.0):
            assert cb.should_try() is False
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1061.0):
            assert cb.should_try() is True

    def test_failed_trial_restarts_cooldown(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=60.0)
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1000.0):
            cb.record_failure()
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1061.0):
            cb.record_failure()
        with patch("adasline.circuit_breaker.time.monotonic", return_value=1100.0):
            assert cb.should_try() is False

    def test_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure()
        cb.record_success()
        assert cb.should_try() is True
