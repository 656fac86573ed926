from __future__ import annotations

import math


DEFAULT_TOLERANCE = 0.15


class RetryBudget:
    def __init__(self, max_retries: int):
        self.max_retries = max(0, max_retries)

    def attempts(self) -> range:
        return range(self.max_retries + 1)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_retries


def min_expected(expected: int, tolerance: float = DEFAULT_TOLERANCE) -> int:
    return math.floor(expected * (1 - tolerance))


def is_undercount(actual: int, expected: int, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    # Zero units is never an acceptable answer, whatever the tolerance allows.
    return actual == 0 or actual < min_expected(expected, tolerance)
