import unittest

from artifact_tracker.core.errors import UpstreamAuthError, UpstreamNotFound, UpstreamTransientError
from artifact_tracker.upstream.retry import RetryPolicy


class _Recorder:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = outcomes
        self.calls = 0
        self.sleeps: list[float] = []

    async def operation(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


class RetryPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def test_transient_failures_are_retried_with_backoff(self) -> None:
        recorder = _Recorder([UpstreamTransientError("boom"), UpstreamTransientError("boom"), "ok"])
        policy = RetryPolicy(max_attempts=3, initial_delay=1.0, multiplier=2.0, sleep=recorder.sleep)

        result = await policy.run(recorder.operation, description="tags")

        self.assertEqual(result, "ok")
        self.assertEqual(recorder.calls, 3)
        self.assertEqual(recorder.sleeps, [1.0, 2.0])

    async def test_last_transient_error_is_raised_after_the_budget(self) -> None:
        last = UpstreamTransientError("third")
        recorder = _Recorder([UpstreamTransientError("first"), UpstreamTransientError("second"), last])
        policy = RetryPolicy(max_attempts=3, sleep=recorder.sleep)

        with self.assertRaises(UpstreamTransientError) as ctx:
            await policy.run(recorder.operation, description="tags")

        self.assertIs(ctx.exception, last)
        self.assertEqual(recorder.calls, 3)
        self.assertEqual(len(recorder.sleeps), 2)

    async def test_auth_and_not_found_are_not_retried(self) -> None:
        for error in (UpstreamAuthError("denied", status=401), UpstreamNotFound("missing", status=404)):
            with self.subTest(error=type(error).__name__):
                recorder = _Recorder([error, "ok"])
                policy = RetryPolicy(max_attempts=3, sleep=recorder.sleep)

                with self.assertRaises(type(error)):
                    await policy.run(recorder.operation, description="tags")

                self.assertEqual(recorder.calls, 1)
                self.assertEqual(recorder.sleeps, [])

    def test_delay_grows_geometrically(self) -> None:
        policy = RetryPolicy(initial_delay=0.5, multiplier=3.0)
        self.assertEqual([policy.delay_for(n) for n in range(3)], [0.5, 1.5, 4.5])


if __name__ == "__main__":
    unittest.main()
