from __future__ import annotations

import random


def next_backoff(prev: float, cap: float) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * 2.0, cap)


def linear_backoff(attempt: int, base: float) -> float:
    """Delay after failed attempt number `attempt` (1-based): base * attempt."""
    return base * max(1, attempt)


def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())
