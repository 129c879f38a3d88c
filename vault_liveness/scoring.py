"""
Vault Liveness — Score Calculator
=================================
Liveness score from total session time:

    elapsed <= grace          -> 100
    otherwise                 -> max(floor, 100 − decay × ⌊elapsed − grace⌋)

With the defaults (grace 10s, decay 5/s, floor 50, pass 75):
    9s -> 100 (pass), 15s -> 75 (pass), 25s -> 50 (fail)
"""

from __future__ import annotations

import math

MAX_SCORE = 100


def compute_score(
    elapsed_seconds: float,
    grace_seconds: float = 10.0,
    decay_per_second: int = 5,
    floor: int = 50,
) -> int:
    """Map elapsed seconds to an integer score in [floor, 100]."""
    elapsed = max(0.0, float(elapsed_seconds))
    if elapsed <= grace_seconds:
        return MAX_SCORE
    penalty = decay_per_second * math.floor(elapsed - grace_seconds)
    return int(max(floor, MAX_SCORE - penalty))


def is_passing(score: int, pass_threshold: int = 75) -> bool:
    return score >= pass_threshold


class ScoreCalculator:
    """compute_score/is_passing bound to one VaultConfig."""

    def __init__(self, config):
        self.grace_seconds = config.score_grace_seconds
        self.decay_per_second = config.score_decay_per_second
        self.floor = config.score_floor
        self.pass_threshold = config.pass_threshold

    def score(self, elapsed_seconds: float) -> int:
        return compute_score(
            elapsed_seconds,
            grace_seconds=self.grace_seconds,
            decay_per_second=self.decay_per_second,
            floor=self.floor,
        )

    def passes(self, score: int) -> bool:
        return is_passing(score, self.pass_threshold)
