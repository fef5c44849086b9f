"""Tests for the bounded parallel executor."""

from __future__ import annotations

import threading
import time
import unittest

from ephfleet_core.errors import PartialFailure
from services.parallel import UnitError, run_parallel, run_parallel_or_raise


class RunParallelTests(unittest.TestCase):
    def test_k_of_n_failures_reported_and_others_complete(self) -> None:
        failing = {1, 4, 7}
        completed: set[int] = set()
        lock = threading.Lock()

        def _unit(index: int) -> None:
            if index in failing:
                raise RuntimeError(f"unit {index} failed")
            time.sleep(0.01)
            with lock:
                completed.add(index)

        failures, error = run_parallel("units", 10, 3, _unit)

        self.assertEqual([1, 4, 7], [item.index for item in failures])
        self.assertIsInstance(error, PartialFailure)
        self.assertEqual(3, len(error.failures))
        self.assertEqual(set(range(10)) - failing, completed)

    def test_success_returns_no_error(self) -> None:
        failures, error = run_parallel("units", 5, 0, lambda index: None)
        self.assertEqual([], failures)
        self.assertIsNone(error)

    def test_concurrency_limit_is_respected(self) -> None:
        in_flight = 0
        peak = 0
        lock = threading.Lock()

        def _unit(index: int) -> None:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.02)
            with lock:
                in_flight -= 1

        run_parallel("units", 12, 2, _unit)

        self.assertLessEqual(peak, 2)

    def test_captured_output_is_kept(self) -> None:
        def _unit(index: int) -> None:
            raise UnitError("exit status 1", b"stderr line")

        failures, _ = run_parallel("units", 1, 1, _unit)

        self.assertEqual("stderr line", failures[0].output)

    def test_zero_items(self) -> None:
        self.assertEqual(([], None), run_parallel("nothing", 0, 4, lambda index: None))

    def test_or_raise(self) -> None:
        with self.assertRaises(PartialFailure):
            run_parallel_or_raise("units", 2, 2, lambda index: 1 / index)


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
