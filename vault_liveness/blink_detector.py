"""
Vault Liveness — Blink Detector
===============================
Edge-triggered blink counting on the averaged Eye Aspect Ratio.

A closed-eye run only counts once: the `eyes_closed` flag is raised on
the falling threshold crossing (where the blink is counted) and lowered
on the rising crossing. Holding the eyes shut for N frames therefore
yields one blink, not N.

The detector keeps no state of its own. The session's flag and counter
are passed in and the next values handed back, so only the engine
mutates the session.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from vault_utils_core import compute_ear


@dataclass(frozen=True)
class BlinkStep:
    """Result of feeding one frame to the detector."""
    ear: float
    eyes_closed: bool
    blink_detected: bool
    count: int


class BlinkDetector:
    """Single-threshold edge detector on averaged EAR."""

    def __init__(self, ear_threshold: float = 0.20, required: int = 2):
        self.ear_threshold = ear_threshold
        self.required = required

    def is_closed(self, ear: float) -> bool:
        return ear < self.ear_threshold

    def step(self, points: np.ndarray, eyes_closed: bool, count: int) -> BlinkStep:
        """Evaluate one face frame.

        Args:
            points: (N, 2) normalized face landmarks.
            eyes_closed: Session flag from the previous frame.
            count: Blinks counted so far this stage.

        Returns:
            BlinkStep with the updated flag and count.
        """
        return self.step_ear(compute_ear(points), eyes_closed, count)

    def step_ear(self, ear: float, eyes_closed: bool, count: int) -> BlinkStep:
        closed = self.is_closed(ear)
        detected = False

        if closed and not eyes_closed:
            # Falling edge: one discrete blink
            if count < self.required:
                count += 1
                detected = True
        # Rising edge simply clears the flag (closed is False)

        return BlinkStep(ear=ear, eyes_closed=closed, blink_detected=detected, count=count)

    def satisfied(self, count: int) -> bool:
        return count >= self.required
