"""
Vault Liveness — Consistency Guard
==================================
Detects a substituted subject mid-session by comparing a coarse face
signature (outer-eye distance, cheek-to-cheek width) against the
baseline captured at first face acquisition.

Head turns and hand gestures legitimately change the projected
signature, so the guard stands down in the HEAD and GESTURE stages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from vault_types import FaceSignature, Stage
from vault_utils_core import relative_deviation

_log = logging.getLogger("ConsistencyGuard")

_EXEMPT_STAGES = frozenset({Stage.HEAD, Stage.GESTURE, Stage.COMPLETE})


@dataclass(frozen=True)
class GuardVerdict:
    """Outcome of one guard check."""
    passed: bool
    checked: bool = False
    eye_deviation: float = 0.0
    width_deviation: float = 0.0

    @property
    def explanation(self) -> str:
        if not self.checked:
            return "not checked"
        return (f"eye_distance drift {self.eye_deviation:.0%}, "
                f"face_width drift {self.width_deviation:.0%}")


class ConsistencyGuard:
    """Flags cross-stage signature drift beyond a relative tolerance."""

    def __init__(self, tolerance: float = 0.35):
        self.tolerance = tolerance

    def check(
        self,
        current: FaceSignature,
        baseline: Optional[FaceSignature],
        stage: Stage,
    ) -> GuardVerdict:
        """Compare `current` against `baseline` for the given stage.

        Returns a passing, unchecked verdict before a baseline exists or
        while the stage expects pose motion.
        """
        if baseline is None or stage in _EXEMPT_STAGES:
            return GuardVerdict(passed=True)

        eye_dev = relative_deviation(current.eye_distance, baseline.eye_distance)
        width_dev = relative_deviation(current.face_width, baseline.face_width)
        passed = eye_dev <= self.tolerance and width_dev <= self.tolerance

        if not passed:
            _log.debug(
                "Signature drift beyond %.2f: eye=%.3f width=%.3f",
                self.tolerance, eye_dev, width_dev,
            )
        return GuardVerdict(
            passed=passed,
            checked=True,
            eye_deviation=eye_dev,
            width_deviation=width_dev,
        )
