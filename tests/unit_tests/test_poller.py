"""
Unit tests for the readiness poller.
"""

import unittest
from unittest.mock import MagicMock

from errors import PollAborted, PollTimeout
from models import PollResult
from poller import wait_until


class FakeClock:
    """Monotonic clock that only advances when sleep() is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitUntil(unittest.TestCase):
    """Test wait_until polling semantics."""

    def setUp(self):
        self.clock = FakeClock()

    def _wait(self, check, timeout=30, interval=5):
        return wait_until(
            check,
            timeout=timeout,
            interval=interval,
            description="test condition",
            sleep=self.clock.sleep,
            clock=self.clock,
        )

    def test_ready_immediately(self):
        """Test a ready check returns without sleeping."""
        check = MagicMock(return_value=PollResult.ready("RUNNING"))

        result = self._wait(check)

        self.assertEqual(result.observed, "RUNNING")
        self.assertEqual(check.call_count, 1)
        self.assertEqual(self.clock.sleeps, [])

    def test_stops_polling_once_ready(self):
        """Test the check is never evaluated again after reporting ready."""
        check = MagicMock(
            side_effect=[
                PollResult.not_ready("STAGING"),
                PollResult.not_ready("STAGING"),
                PollResult.ready("RUNNING"),
            ]
        )

        result = self._wait(check)

        self.assertEqual(result.observed, "RUNNING")
        self.assertEqual(check.call_count, 3)
        self.assertEqual(self.clock.sleeps, [5, 5])

    def test_timeout_carries_last_observed_state(self):
        """Test a never-ready check times out with the last observation."""
        check = MagicMock(return_value=PollResult.not_ready("STAGING"))

        with self.assertRaises(PollTimeout) as ctx:
            self._wait(check, timeout=30, interval=5)

        self.assertEqual(ctx.exception.last_observed, "STAGING")
        # one evaluation at t=0 plus one per interval up to the deadline
        self.assertEqual(check.call_count, 7)
        self.assertLessEqual(self.clock.now, 30)

    def test_sleep_never_overshoots_deadline(self):
        """Test the final sleep is clipped to the remaining time."""
        check = MagicMock(return_value=PollResult.not_ready())

        with self.assertRaises(PollTimeout):
            self._wait(check, timeout=12, interval=5)

        self.assertEqual(self.clock.sleeps, [5, 5, 2])

    def test_failed_short_circuits(self):
        """Test an unrecoverable result raises without retrying."""
        check = MagicMock(return_value=PollResult.failed("UNKNOWN", "instance not found"))

        with self.assertRaises(PollAborted) as ctx:
            self._wait(check)

        self.assertEqual(check.call_count, 1)
        self.assertEqual(ctx.exception.last_observed, "UNKNOWN")
        self.assertIn("instance not found", str(ctx.exception))

    def test_zero_timeout_evaluates_once(self):
        """Test a zero timeout still evaluates the check once."""
        check = MagicMock(return_value=PollResult.not_ready("TERMINATED"))

        with self.assertRaises(PollTimeout):
            self._wait(check, timeout=0)

        self.assertEqual(check.call_count, 1)


if __name__ == "__main__":
    unittest.main()
