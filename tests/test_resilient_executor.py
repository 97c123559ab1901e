"""
Tests for the resilient executor: failure classification, retry budgets,
backoff schedules and cancellation.

The executor fixture records backoff delays instead of sleeping.
"""

import asyncio

import pytest


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def http_failure(status):
    from errors import http_error
    return http_error("Test service", status, "body", "test")


class FlakyOperation:
    """Fails with the given exceptions in order, then returns ``result``."""

    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestClassifyFailure:

    @pytest.mark.readonly
    @pytest.mark.parametrize("status,classification", [
        (429, "rate_limited"),
        (502, "server_unavailable"),
        (503, "server_unavailable"),
        (504, "server_unavailable"),
        (401, "session_expired"),
        (403, "access_denied"),
        (400, "unclassified"),
        (404, "unclassified"),
        (500, "unclassified"),
    ])
    def test_http_status(self, status, classification):
        from resilient_executor import classify_failure
        assert classify_failure(http_failure(status)).classification == classification

    @pytest.mark.readonly
    def test_timeout(self):
        from resilient_executor import classify_failure
        assert classify_failure(asyncio.TimeoutError()).classification == "timeout"
        assert classify_failure(TimeoutError()).retryable

    @pytest.mark.readonly
    def test_network_read_vs_write(self):
        from errors import NetworkUnavailable
        from resilient_executor import classify_failure
        exc = NetworkUnavailable("offline", "test")
        assert classify_failure(exc, is_write=True).classification == "network_unreachable_write"
        assert classify_failure(exc, is_write=False).classification == "network_unreachable"
        assert not classify_failure(exc, is_write=False).retryable

    @pytest.mark.readonly
    def test_plain_exception_is_unclassified(self):
        from resilient_executor import classify_failure
        assert classify_failure(ValueError("bad")).classification == "unclassified"


class TestBackoff:

    @pytest.mark.readonly
    def test_rate_limit_schedule(self):
        from resilient_executor import rate_limit_backoff
        assert [rate_limit_backoff(a, lambda lo, hi: 0.0) for a in range(3)] == [5.0, 10.0, 20.0]

    @pytest.mark.readonly
    def test_server_error_schedule_adds_jitter(self):
        from resilient_executor import server_error_backoff
        assert [server_error_backoff(a, lambda lo, hi: 0.0) for a in range(3)] == [1.0, 2.0, 4.0]
        assert server_error_backoff(0, lambda lo, hi: hi) == 2.0


class TestExecute:

    @pytest.mark.parametrize("budget", [1, 2, 3, 5])
    def test_503_until_last_attempt_succeeds(self, executor, budget):
        operation = FlakyOperation([http_failure(503)] * (budget - 1), result="done")
        result = run_async(executor.execute(operation, max_retries=budget, operation_name="op"))
        assert result == "done"
        assert operation.calls == budget

    def test_503_every_time_exhausts_budget(self, executor, recorded_sleeps):
        from errors import RetryExhausted
        operation = FlakyOperation([http_failure(503)] * 5)
        with pytest.raises(RetryExhausted) as exc_info:
            run_async(executor.execute(operation, max_retries=3, operation_name="op"))
        assert operation.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error.status_code == 503
        assert recorded_sleeps == [1.0, 2.0]

    def test_429_exhaustion_raises_rate_limited(self, executor, recorded_sleeps):
        from errors import RateLimited, RetryExhausted
        operation = FlakyOperation([http_failure(429)] * 3)
        with pytest.raises(RateLimited) as exc_info:
            run_async(executor.execute(operation, max_retries=3))
        assert isinstance(exc_info.value, RetryExhausted)
        assert "Too many requests" in str(exc_info.value)
        assert recorded_sleeps == [5.0, 10.0]

    def test_timeouts_are_retried(self, executor):
        operation = FlakyOperation([asyncio.TimeoutError(), TimeoutError()], result=1)
        assert run_async(executor.execute(operation, max_retries=3)) == 1
        assert operation.calls == 3

    @pytest.mark.parametrize("status,error_name", [(401, "SessionExpired"), (403, "AccessDenied")])
    def test_auth_failures_are_not_retried(self, executor, recorded_sleeps, status, error_name):
        import errors
        operation = FlakyOperation([http_failure(status)])
        with pytest.raises(getattr(errors, error_name)):
            run_async(executor.execute(operation, max_retries=4))
        assert operation.calls == 1
        assert recorded_sleeps == []

    def test_unclassified_error_is_reraised_unchanged(self, executor):
        error = ValueError("schema mismatch")
        operation = FlakyOperation([error])
        with pytest.raises(ValueError) as exc_info:
            run_async(executor.execute(operation, max_retries=4))
        assert exc_info.value is error
        assert operation.calls == 1

    def test_network_failure_on_write_becomes_queued_write(self, executor):
        from errors import NetworkQueuedWrite, NetworkUnavailable
        operation = FlakyOperation([NetworkUnavailable("offline", "create")])
        with pytest.raises(NetworkQueuedWrite):
            run_async(executor.execute(operation, is_write=True, max_retries=3))
        assert operation.calls == 1

    def test_network_failure_on_read_surfaces(self, executor):
        from errors import NetworkUnavailable
        operation = FlakyOperation([NetworkUnavailable("offline", "list")])
        with pytest.raises(NetworkUnavailable):
            run_async(executor.execute(operation, is_write=False, max_retries=3))
        assert operation.calls == 1

    def test_cancel_event_stops_before_next_attempt(self, executor):
        from errors import PipelineCancelled
        cancel_event = asyncio.Event()

        async def fail_and_cancel():
            cancel_event.set()
            raise http_failure(503)

        with pytest.raises(PipelineCancelled):
            run_async(executor.execute(fail_and_cancel, max_retries=3, cancel_event=cancel_event))

    def test_deadline_stops_retrying(self, recorded_sleeps):
        from errors import RetryExhausted
        from resilient_executor import ResilientExecutor

        async def fake_sleep(delay):
            recorded_sleeps.append(delay)

        executor = ResilientExecutor(sleep=fake_sleep, jitter=lambda lo, hi: 0.0,
                                     clock=lambda: sum(recorded_sleeps))
        operation = FlakyOperation([http_failure(429)] * 4)
        with pytest.raises(RetryExhausted):
            run_async(executor.execute(operation, max_retries=4, deadline=12.0))
        assert recorded_sleeps == [5.0]
        assert operation.calls == 2

    def test_zero_budget_still_attempts_once(self, executor):
        operation = FlakyOperation([], result="x")
        assert run_async(executor.execute(operation, max_retries=0)) == "x"
        assert operation.calls == 1
